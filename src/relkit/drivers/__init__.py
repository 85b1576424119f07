"""Driver protocol and backends. The core never imports a backend directly."""
