"""Firebase callable functions client and error codes."""
