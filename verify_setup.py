"""
Setup verification script for the EcoComply backend.
Checks dependencies, configuration and external services.
"""
import asyncio
import os
import shutil
import sys
from typing import List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_status(message: str, status: bool):
    """Print colored status message."""
    symbol = f"{GREEN}✓{RESET}" if status else f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    """Check Python version is 3.11+."""
    version = sys.version_info
    ok = version.major == 3 and version.minor >= 11
    label = f"{version.major}.{version.minor}.{version.micro}"
    print_status(f"Python version: {label}" if ok else f"Python version {label} (requires 3.11+)", ok)
    return ok


async def check_dependencies() -> bool:
    """Check if required packages are importable."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "asyncpg",
        "pydantic_settings",
        "httpx",
        "aiofiles",
        "fitz",
        "docx",
        "pytesseract",
        "jwt",
        "bcrypt",
        "openpyxl",
        "qrcode",
        "redis",
    ]

    all_installed = True
    for package in required_packages:
        try:
            __import__(package)
            print_status(f"Package '{package}' installed", True)
        except ImportError:
            print_status(f"Package '{package}' missing", False)
            all_installed = False

    return all_installed


async def check_env_file() -> bool:
    if os.path.exists(".env"):
        print_status(".env file exists", True)
        return True
    print_status(".env file missing (copy from .env.example)", False)
    return False


async def check_secrets() -> bool:
    """JWT secret must be changed; LLM and email keys are reported but optional."""
    from ecocomply.config import settings

    jwt_ok = settings.JWT_SECRET != "change-me-in-production"
    print_status("JWT_SECRET set" if jwt_ok else "JWT_SECRET still uses the default value", jwt_ok)
    print_status(
        f"OPENAI_API_KEY: {'set' if settings.OPENAI_API_KEY else 'not set (extraction disabled)'}",
        bool(settings.OPENAI_API_KEY),
    )
    print_status(
        f"RESEND_API_KEY: {'set' if settings.RESEND_API_KEY else 'not set (emails will fail)'}",
        bool(settings.RESEND_API_KEY),
    )
    return jwt_ok


async def check_upload_dir() -> bool:
    from ecocomply.config import settings

    if os.path.exists(settings.UPLOAD_DIR):
        print_status(f"Upload directory exists ({settings.UPLOAD_DIR})", True)
        return True
    print_status("Upload directory missing (will be created on startup)", False)
    return False


async def check_tesseract() -> bool:
    """Tesseract is needed for scanned permits."""
    from ecocomply.config import settings

    found = os.path.exists(settings.TESSERACT_CMD) or shutil.which("tesseract") is not None
    print_status(f"Tesseract OCR: {'Found' if found else 'Missing'}", found)
    if not found:
        print(f"  {YELLOW}Install tesseract-ocr or set TESSERACT_CMD{RESET}")
    return found


async def check_postgres() -> bool:
    """Check the configured database accepts connections."""
    try:
        from sqlalchemy import text

        from ecocomply.database import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await engine.dispose()

        print_status("Database connection successful", True)
        return True

    except Exception as e:
        print_status(f"Database connection failed: {str(e)}", False)
        print(f"  {YELLOW}Run: docker-compose up -d{RESET}")
        return False


async def check_redis() -> bool:
    from ecocomply.config import settings

    if not settings.REDIS_URL:
        print_status("Redis not configured (rate limiting is in-process)", True)
        return True
    try:
        import redis.asyncio as aioredis

        client = aioredis.from_url(settings.REDIS_URL)
        try:
            await client.ping()
        finally:
            await client.aclose()
        print_status("Redis connection successful", True)
        return True
    except Exception as e:
        print_status(f"Redis connection failed: {str(e)}", False)
        return False


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}EcoComply Backend - Setup Verification{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

    checks: List[Tuple[str, callable]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("Secrets", check_secrets),
        ("Upload Directory", check_upload_dir),
        ("Tesseract OCR", check_tesseract),
        ("Database", check_postgres),
        ("Redis", check_redis),
    ]

    results = []

    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            result = await check_func()
            results.append(result)
        except Exception as e:
            print_status(f"Error during check: {str(e)}", False)
            results.append(False)

    # Summary
    print(f"\n{BLUE}{'='*60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
        print(f"\n{GREEN}You're ready to run the backend:{RESET}")
        print(f"  uvicorn ecocomply.main:app --reload")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before running the backend.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'='*60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
