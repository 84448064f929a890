# Repository root marker: lets pytest import `src`, `apps` and `utils`
# without an installed distribution.
