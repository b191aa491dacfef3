EXIT_OK = 0  # Success, or a failure tolerated outside strict mode
EXIT_FAILURE = 1  # Terminal failure in strict mode
EXIT_USAGE = 2  # Invalid command line (reported by click)
