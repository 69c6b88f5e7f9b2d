"""Cloud, remote-execution and monitoring building blocks."""
