"""
Serverless entry point for the Breachwatch API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("ESCALATION_CONFIG_PATH", os.path.join(parent_dir, "escalation_config.yaml"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")  # Timers are driven by POST /escalation/tick and /sla/scan

from mangum import Mangum
from src.main import app

# Lambda handler for ASGI app; lifespan wires the database and config
handler = Mangum(app, lifespan="auto")
