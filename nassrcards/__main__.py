import os

import uvicorn


def main() -> None:
    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("nassrcards.server:app", host="0.0.0.0", port=port,
                log_config=None)


if __name__ == "__main__":
    main()
