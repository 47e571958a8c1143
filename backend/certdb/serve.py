"""Run the API under uvicorn. TLS is terminated by the proxy in front."""

import os

import uvicorn


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def main() -> None:
    reload_enabled = _env_flag("RELOAD")
    uvicorn.run(
        "certdb.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=reload_enabled,
        # uvicorn ignores workers when reload is on
        workers=None if reload_enabled else int(os.getenv("WEB_CONCURRENCY", "1")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        proxy_headers=True,
        forwarded_allow_ips=os.getenv("FORWARDED_ALLOW_IPS", "*"),
    )


if __name__ == "__main__":
    main()
