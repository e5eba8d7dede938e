"""Architecture tests: layer direction, port boundaries and code conventions."""
