import os
import uvicorn

if __name__ == "__main__":
    host = os.environ.get("CHATRELAY_HOST", "localhost")
    port = int(os.environ.get("CHATRELAY_PORT", "3000"))
    uvicorn.run(
        "chatrelay.server:app",
        host=host,
        port=port,
        reload=os.environ.get("CHATRELAY_RELOAD", "") == "1",
        reload_dirs=["chatrelay"],
    )
