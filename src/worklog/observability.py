"""Observability setup - Logfire.

Traces and logs go to Logfire when a LOGFIRE_TOKEN is present in the
environment; otherwise they stay local. Console output is opt-in.
"""

import logfire


def configure(service_name: str = "worklog", debug: bool = False) -> None:
    """Configure Logfire for this process.

    Args:
        service_name: Name to identify this service in traces.
        debug: If True, also log to console. Default False (quiet mode).
    """
    logfire.configure(
        service_name=service_name,
        send_to_logfire="if-token-present",
        console=logfire.ConsoleOptions(min_log_level="debug") if debug else False,
    )
