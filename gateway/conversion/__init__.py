"""Protocol adapters: inbound requests to chat payloads, upstream output to
canonical events, canonical events to the caller's wire format."""
