"""
Startup script for the Iron City dashboard: FastAPI on the configured port,
Streamlit on the next free port from 8501.
"""

import logging
import socket
import subprocess
import threading
import time

from constants.settings import get_settings

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Make sure package loggers are also set to INFO level
logging.getLogger('utils').setLevel(logging.INFO)
logging.getLogger('constants').setLevel(logging.INFO)
logging.getLogger('api').setLevel(logging.INFO)


def is_port_in_use(port):
    """Check if a port is already bound on localhost"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('localhost', port)) == 0


def find_available_port(start_port, max_attempts=10):
    """Return the first free port at or after start_port"""
    for port in range(start_port, start_port + max_attempts):
        if not is_port_in_use(port):
            return port
    logger.warning(f"No free port in {start_port}-{start_port + max_attempts - 1}, using {start_port}")
    return start_port


def run_process(name, command):
    logger.info(f"🚀 Starting {name}: {' '.join(command)}")
    try:
        subprocess.run(command, check=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"❌ {name} exited: {e}")
        raise


def main():
    """Start the API in a background thread and Streamlit in the foreground"""
    settings = get_settings()
    logger.info(f"🏍️ Starting Iron City Fulfillment ({settings.storage_backend} storage)")

    api_port = find_available_port(settings.port)
    api_command = ["uvicorn", "api:app", "--host", "0.0.0.0", "--port", str(api_port)]
    api_thread = threading.Thread(target=run_process, args=("FastAPI", api_command), daemon=True)
    api_thread.start()

    # Give FastAPI a moment to bind before Streamlit starts
    time.sleep(2)

    streamlit_port = find_available_port(8501)
    run_process("Streamlit", [
        "streamlit", "run", "app.py",
        "--server.port", str(streamlit_port),
        "--server.address", "0.0.0.0",
        "--server.headless", "true",
    ])


if __name__ == "__main__":
    main()
