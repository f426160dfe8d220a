"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
APP_PROJECT_PATH = Path(os.getenv("APP_PROJECT_PATH", "."))
PIPELINE_RUNS_DIR = PROJECT_ROOT / "pipeline_runs"
STATE_DIR = Path(os.getenv("STATE_DIR", ".delivery"))
PID_FILE = STATE_DIR / "app.pid"
APP_LOG_FILE = STATE_DIR / "app.log"

# Job identity
JOB_NAME = os.getenv("JOB_NAME", "petclinic-delivery")
BUILD_NUMBER = os.getenv("BUILD_NUMBER", "")
BUILD_URL = os.getenv("BUILD_URL", "")

# Local application
SERVICE_NAME = os.getenv("SERVICE_NAME", "petclinic")
APP_JAR_GLOB = "target/*.jar"
APP_PORT = int(os.getenv("APP_PORT", "8080"))
APP_BASE_URL = os.getenv("APP_BASE_URL", f"http://localhost:{APP_PORT}")
HEALTH_PATH = os.getenv("HEALTH_PATH", "/actuator/health")
ROOT_PATH = os.getenv("ROOT_PATH", "/")

# Readiness
LOCAL_PROBE_MODE = os.getenv("LOCAL_PROBE_MODE", "delay")  # delay | retry
LOCAL_STARTUP_DELAY = float(os.getenv("LOCAL_STARTUP_DELAY", "30"))
VERIFY_ATTEMPTS = int(os.getenv("VERIFY_ATTEMPTS", "10"))
VERIFY_INTERVAL = float(os.getenv("VERIFY_INTERVAL", "10"))
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "5"))
LOG_TAIL_LINES = int(os.getenv("LOG_TAIL_LINES", "50"))

# Process shutdown
PROCESS_STOP_CHECKS = int(os.getenv("PROCESS_STOP_CHECKS", "10"))
PROCESS_STOP_INTERVAL = float(os.getenv("PROCESS_STOP_INTERVAL", "1"))

# Build / test
MAVEN_CMD = os.getenv("MAVEN_CMD", "mvn")
SUREFIRE_REPORTS = "target/surefire-reports"
TESTS_POLICY = os.getenv("TESTS_POLICY", "tolerated")  # tolerated | fatal

# Code quality
SONAR_HOST_URL = os.getenv("SONAR_HOST_URL", "http://localhost:9000")
SONAR_TOKEN = os.getenv("SONAR_TOKEN", "")
SONAR_PROJECT_KEY = os.getenv("SONAR_PROJECT_KEY", "spring-petclinic")

# Container image
DOCKER_CMD = os.getenv("DOCKER_CMD", "docker")
IMAGE_REPOSITORY = os.getenv("IMAGE_REPOSITORY", "docker.io/example/petclinic")
IMAGE_FIXED_TAG = os.getenv("IMAGE_FIXED_TAG", "latest")
DOCKERFILE = "Dockerfile"
BASE_IMAGE = os.getenv("BASE_IMAGE", "openjdk:17-jdk-slim")

# Cluster
KUBECTL_CMD = os.getenv("KUBECTL_CMD", "kubectl")
K8S_NAMESPACE = os.getenv("K8S_NAMESPACE", "default")
DEPLOYMENT_NAME = os.getenv("DEPLOYMENT_NAME", "petclinic")
CONTAINER_NAME = os.getenv("CONTAINER_NAME", "petclinic")
K8S_MANIFESTS = [
    p.strip() for p in os.getenv("K8S_MANIFESTS", "k8s/deployment.yaml,k8s/service.yaml").split(",")
    if p.strip()
]
ROLLOUT_DEADLINE = float(os.getenv("ROLLOUT_DEADLINE", "300"))
ROLLOUT_POLL_INTERVAL = float(os.getenv("ROLLOUT_POLL_INTERVAL", "10"))
SERVICE_URL = os.getenv("SERVICE_URL", "")

# Notifications
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "25"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
NOTIFY_FROM = os.getenv("NOTIFY_FROM", "ci@localhost")
NOTIFY_TO = [a.strip() for a in os.getenv("NOTIFY_TO", "").split(",") if a.strip()]

# Postgres ledger
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Temporal
TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "localhost:7233")
TEMPORAL_TASK_QUEUE = "delivery-pilot-queue"
TEMPORAL_NAMESPACE = "default"
