"""
In-place edits to generated source trees.

Every patch is idempotent: applying it twice leaves the tree as applying
it once did, and each reports whether it changed anything.
"""
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_RELATIVE_PATH = Path("prisma") / "schema.prisma"
SEED_RELATIVE_PATH = Path("prisma") / "seed.ts"
AUTH_RELATIVE_PATH = Path("src") / "auth.ts"

# Native engines for the build host plus both OpenSSL lines of the
# deployment image.
BINARY_TARGETS_LINE = 'binaryTargets = ["native", "debian-openssl-1.1.x", "debian-openssl-3.0.x"]'

_PROVIDER_LINE = re.compile(r'^(\s*)provider\s*=\s*"prisma-client-js"\s*$', re.MULTILINE)
_DATASOURCE_PROVIDER = re.compile(r'(datasource\s+\w+\s*\{[^}]*provider\s*=\s*"[^"]*")')
_URL_LINE = re.compile(r"^\s*url\s*=", re.MULTILINE)
DATASOURCE_URL_LINE = 'url      = env("DATABASE_URL")'

LOCAL_ENV_CONTENT = 'DATABASE_URL="file:./dev.db"\nAUTH_SECRET="preview-secret-key"\n'

PREVIEW_AUTH_MODULE = """import NextAuth from "next-auth";
import authConfig from "./auth.config";

const nextAuth = NextAuth(authConfig);

export const handlers = nextAuth.handlers;
export const signIn = nextAuth.signIn;
export const signOut = nextAuth.signOut;

// In preview mode, return a fake session so all auth checks pass
const previewSession = {
  user: { id: "preview", email: "admin@example.com", name: "Preview User" },
  expires: new Date(Date.now() + 86400000).toISOString(),
};

export const auth = process.env.PREVIEW_MODE === "true"
  ? async () => previewSession
  : nextAuth.auth;
"""


def inject_binary_targets(workspace: Path) -> bool:
    """
    Add deployment-target engine binaries to the client generator block.

    Must run before dependency installation, which triggers client
    generation from the schema.

    Returns:
        True if the schema was modified. False if the schema file is absent,
        already declares binary targets, or has no client generator line.
    """
    schema_path = workspace / SCHEMA_RELATIVE_PATH
    if not schema_path.exists():
        return False

    schema = schema_path.read_text(encoding="utf-8")
    if "binaryTargets" in schema:
        return False

    patched, count = _PROVIDER_LINE.subn(
        lambda m: f"{m.group(0)}\n{m.group(1)}{BINARY_TARGETS_LINE}",
        schema,
        count=1,
    )
    if not count:
        return False

    schema_path.write_text(patched, encoding="utf-8")
    return True


def ensure_local_env(workspace: Path) -> bool:
    env_path = workspace / ".env"
    if env_path.exists():
        return False
    env_path.write_text(LOCAL_ENV_CONTENT, encoding="utf-8")
    return True


def patch_auth_for_preview(workspace: Path) -> bool:
    """
    Replace src/auth.ts with a variant that returns a fixed session when
    PREVIEW_MODE=true. Untouched if the file is missing or already patched.
    """
    auth_path = workspace / AUTH_RELATIVE_PATH
    if not auth_path.exists():
        return False
    if "PREVIEW_MODE" in auth_path.read_text(encoding="utf-8"):
        return False
    auth_path.write_text(PREVIEW_AUTH_MODULE, encoding="utf-8")
    return True


def remove_seed_script(workspace: Path) -> bool:
    seed_path = workspace / SEED_RELATIVE_PATH
    if not seed_path.exists():
        return False
    seed_path.unlink()
    return True


def has_seed_script(workspace: Path) -> bool:
    return (workspace / SEED_RELATIVE_PATH).exists()


def ensure_datasource_url(workspace: Path) -> bool:
    """
    Point the datasource at DATABASE_URL when the schema declares no url.

    Only for schema tooling that reads the url from the schema itself;
    newer versions take it from a root config file instead.
    """
    schema_path = workspace / SCHEMA_RELATIVE_PATH
    if not schema_path.exists():
        return False

    schema = schema_path.read_text(encoding="utf-8")
    if _URL_LINE.search(schema):
        return False

    patched, count = _DATASOURCE_PROVIDER.subn(
        lambda m: f"{m.group(1)}\n  {DATASOURCE_URL_LINE}",
        schema,
        count=1,
    )
    if not count:
        return False

    schema_path.write_text(patched, encoding="utf-8")
    return True
