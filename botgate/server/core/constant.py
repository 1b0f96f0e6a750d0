"""Server-wide constants."""

PROJECT_NAME = "botgate"
API_V1_STR = "/api/v1"
