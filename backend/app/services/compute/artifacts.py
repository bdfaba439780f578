"""
Deploy artifact writer.

Renders the files the platform needs to build and run an instance:
platform config, Dockerfile, start script and .dockerignore. Two flavours:

- preview: slim image built from artifacts already produced in the
  workspace (standalone build, installed node_modules, seeded dev.db)
- full: multi-stage image that installs and builds inside the builder
  stage (used for fixed templates, which arrive without build output)
"""
import json
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

INTERNAL_PORT = 3000
DOCKERFILE_NAME = "Dockerfile.fly"

# Read by the generated apps' prisma/provision-users.ts
TEAM_ROSTER_ENV = "GO4IT_TEAM_MEMBERS"


def render_platform_config(instance_name: str, region: str, preview: bool) -> str:
    preview_env = '  PREVIEW_MODE = "true"\n' if preview else ""
    return f'''app = "{instance_name}"
primary_region = "{region}"

[build]

[http_service]
  internal_port = {INTERNAL_PORT}
  force_https = true
  auto_stop_machines = "suspend"
  auto_start_machines = true
  min_machines_running = 0

[[vm]]
  size = "shared-cpu-1x"
  memory = "512mb"

[mounts]
  source = "data"
  destination = "/data"

[env]
  DATABASE_URL = "file:/data/app.db"
  PORT = "{INTERNAL_PORT}"
  NODE_ENV = "production"
  AUTH_TRUST_HOST = "true"
{preview_env}'''


# The same start script serves preview and production: PREVIEW_MODE decides
# whether the seeded database is reused or a fresh one is provisioned with
# real team members. Promotion flips PREVIEW_MODE without a rebuild.
START_SCRIPT = f"""#!/bin/sh
set -e

mkdir -p /data 2>/dev/null || true

if [ "$PREVIEW_MODE" = "true" ]; then
  if [ ! -f /data/app.db ]; then
    cp /app/dev.db /data/app.db 2>/dev/null || echo "Warning: no seed DB found"
  fi
else
  if [ -f /data/.preview ]; then
    rm -f /data/app.db /data/.preview
  fi

  echo "Running database setup..."
  npx prisma db push --accept-data-loss 2>&1 || echo "Warning: prisma db push had issues"

  if [ -n "${TEAM_ROSTER_ENV}" ] && [ -f "prisma/provision-users.ts" ]; then
    echo "Provisioning team members..."
    npx tsx prisma/provision-users.ts 2>&1 || echo "Warning: user provisioning had issues"
  fi
fi

if [ "$PREVIEW_MODE" = "true" ]; then
  touch /data/.preview
fi

echo "Starting application..."
exec node server.js
"""


PREVIEW_DOCKERFILE = f"""FROM node:20-slim
WORKDIR /app

RUN apt-get update && apt-get install -y openssl && rm -rf /var/lib/apt/lists/*

COPY .next/standalone ./
COPY .next/static ./.next/static
COPY public ./public

COPY node_modules ./node_modules
COPY package.json ./

COPY prisma ./prisma

COPY dev.db ./dev.db

COPY start.sh ./
RUN chmod +x start.sh

EXPOSE {INTERNAL_PORT}
ENV PORT={INTERNAL_PORT}
CMD ["sh", "start.sh"]
"""


def render_full_dockerfile(with_schema_config: bool) -> str:
    config_copy = "\nCOPY prisma.config.ts ./" if with_schema_config else ""
    config_copy_runner = "\nCOPY --from=builder /app/prisma.config.ts ./" if with_schema_config else ""
    return f"""FROM node:20-slim AS builder
WORKDIR /app

COPY package.json package-lock.json* ./
COPY prisma ./prisma{config_copy}
RUN npm ci --legacy-peer-deps

COPY . .
ENV DATABASE_URL="file:./build.db"
RUN npm run build

FROM node:20-slim AS runner
WORKDIR /app
ENV NODE_ENV=production

COPY --from=builder /app/.next/standalone ./
COPY --from=builder /app/.next/static ./.next/static
COPY --from=builder /app/public ./public
COPY --from=builder /app/node_modules ./node_modules
COPY --from=builder /app/package.json ./
COPY --from=builder /app/prisma ./prisma{config_copy_runner}

COPY start.sh ./
RUN chmod +x start.sh

EXPOSE {INTERNAL_PORT}
ENV PORT={INTERNAL_PORT}
CMD ["sh", "start.sh"]
"""


PREVIEW_DOCKERIGNORE = ".git\n*.md\n.env*\nsrc/\n.next/cache\n"
FULL_DOCKERIGNORE = "node_modules\n.next\n.git\n*.md\n.env*\ndev.db\n"

_CONFIG_FILE_VERSION = re.compile(r"^[\^~>=]*7|^latest$", re.IGNORECASE)


def uses_schema_config_file(workspace: Path) -> bool:
    """True when the schema tooling version expects a root prisma.config.ts."""
    manifest = workspace / "package.json"
    if not manifest.exists():
        return False
    try:
        pkg = json.loads(manifest.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return (workspace / "prisma.config.ts").exists()
    version = (
        pkg.get("devDependencies", {}).get("prisma")
        or pkg.get("dependencies", {}).get("prisma")
        or pkg.get("dependencies", {}).get("@prisma/client")
        or ""
    )
    return bool(_CONFIG_FILE_VERSION.match(version))


def write_deploy_artifacts(workspace: Path, instance_name: str, region: str, preview: bool) -> list[str]:
    """
    Write platform config, Dockerfile, start script and .dockerignore.

    Returns:
        Names of the files written
    """
    if preview:
        dockerfile = PREVIEW_DOCKERFILE
        dockerignore = PREVIEW_DOCKERIGNORE
    else:
        dockerfile = render_full_dockerfile(uses_schema_config_file(workspace))
        dockerignore = FULL_DOCKERIGNORE

    files = {
        "fly.toml": render_platform_config(instance_name, region, preview),
        "start.sh": START_SCRIPT,
        DOCKERFILE_NAME: dockerfile,
        ".dockerignore": dockerignore,
    }
    for name, content in files.items():
        (workspace / name).write_text(content, encoding="utf-8")

    (workspace / "public").mkdir(exist_ok=True)
    logger.debug(f"Wrote deploy artifacts for {instance_name} into {workspace}")
    return list(files)
