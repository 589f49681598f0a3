from collections.abc import Callable

# (percent 0-100, message)
ProgressCallback = Callable[[int, str], None]
