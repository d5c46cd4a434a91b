"""
Casedesk Server Runner
======================
Run this directly: python run_server.py
Host, port and log level come from the environment / .env (see casedesk.core.config).
"""
import uvicorn

from casedesk.core.config import get_settings


def main():
    settings = get_settings()

    print()
    print("=" * 60)
    print(f"  {settings.app_name.upper()} SERVER v{settings.app_version}")
    print("=" * 60)
    print()
    print(f"  Jurisdiction:   {settings.jurisdiction}")
    print(f"  API Docs:       http://localhost:{settings.port}/api/docs")
    print(f"  Health:         http://localhost:{settings.port}/health")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    uvicorn.run(
        "casedesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
