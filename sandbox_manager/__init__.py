"""Browser sandbox manager: ephemeral container provisioning API."""
