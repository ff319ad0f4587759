"""
Diagnostic logging shared by the image-roi GUI and the image-ops CLI.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import cv2


def get_app_dir():
    """Directory holding the executable (PyInstaller) or this script"""
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    return Path(__file__).parent


def log_file_name(app_name):
    return f"{app_name}-error-{datetime.now().strftime('%Y%m%d')}.log"


def setup_error_logging(app_name="image-roi", log_dir=None):
    """
    Setup logging to capture runtime errors and diagnostic information.
    The log file is written next to the executable/script unless
    log_dir is given.
    """
    log_dir = Path(log_dir) if log_dir else get_app_dir()
    log_file = log_dir / log_file_name(app_name)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stderr)
        ]
    )

    return logging.getLogger(__name__)


def log_opencv_diagnostics(logger):
    """
    Log OpenCV version, build and environment information.
    Every probe is guarded so a broken install still produces a report.
    """
    logger.info("=" * 60)
    logger.info("OpenCV Diagnostic Information")
    logger.info("=" * 60)

    logger.info(f"OpenCV Version: {cv2.__version__}")

    try:
        opencv_path = cv2.__file__
        logger.info(f"OpenCV Module Path: {opencv_path}")
        logger.info(f"OpenCV Module Exists: {os.path.exists(opencv_path)}")
    except Exception as e:
        logger.error(f"Could not determine OpenCV path: {e}")

    try:
        build_info = cv2.getBuildInformation()
        for line in build_info.split('\n'):
            if any(keyword in line.lower() for keyword in ('version', 'platform', 'gui', 'python')):
                logger.info(f"  {line.strip()}")
    except Exception as e:
        logger.error(f"Could not get build information: {e}")

    logger.info(f"Python Version: {sys.version}")
    logger.info(f"Platform: {sys.platform}")
    logger.info(f"Frozen (PyInstaller): {getattr(sys, 'frozen', False)}")

    logger.info("Relevant Environment Variables:")
    for var in ('PYTHONPATH', 'OPENCV_DIR', 'DISPLAY'):
        logger.info(f"  {var}: {os.environ.get(var, 'Not set')}")

    logger.info("=" * 60)


def log_fatal_error(logger, error, traceback_text):
    """Log an uncaught exception followed by OpenCV diagnostics"""
    logger.error("=" * 60)
    logger.error("FATAL ERROR OCCURRED")
    logger.error("=" * 60)
    logger.error(f"Error: {error}")
    logger.error(f"Error Type: {type(error).__name__}")
    logger.error("Stack Trace:")
    logger.error(traceback_text)

    logger.error("Logging OpenCV diagnostics due to fatal error:")
    try:
        log_opencv_diagnostics(logger)
    except Exception as diag_error:
        logger.error(f"Could not log diagnostics: {diag_error}")
