"""Infrastructure layer: config, logging, database, retry, remote client, checkpoints."""
