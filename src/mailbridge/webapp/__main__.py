import os

import uvicorn
from dotenv import load_dotenv


def main() -> None:
    load_dotenv()
    uvicorn.run(
        "mailbridge.webapp.main:app",
        host=os.getenv("MAILBRIDGE_HOST", "127.0.0.1"),
        port=int(os.getenv("MAILBRIDGE_PORT", "8000")),
        log_level=os.getenv("MAILBRIDGE_LOG_LEVEL", "INFO").lower(),
    )


if __name__ == "__main__":
    main()
