"""Landing-page deployment orchestration service."""
