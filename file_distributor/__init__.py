"""File Distributor: push local file changes to a fleet of servers over SFTP.

Watches a directory, batches bursts of changes, and uploads each batch
to every enabled server in parallel with retries, reporting partial
failures to Discord.
"""

__version__ = "1.0.0"
__app_name__ = "File Distributor"
