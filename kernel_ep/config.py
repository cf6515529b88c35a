"""
Where things live on disk.
Everything is overridable from the environment or a `.env` file.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Intermediate results we do not wish to version
LOG_DIR = os.getenv("LOG_DIR", "_logs")
# Outputs we wish to keep
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "outputs")
# Figures we wish to keep
FIG_DIR = os.getenv("FIG_DIR", "fig")
# .mat records for analysis elsewhere
SAVED_DIR = os.getenv("SAVED_DIR", "saved")
# serialised factor operators trained elsewhere
FACTOR_OP_DIR = os.getenv("FACTOR_OP_DIR", os.path.join(SAVED_DIR, "factor_op"))


def saved_dir():
    return os.getenv("SAVED_DIR", SAVED_DIR)


def factor_op_dir():
    return os.getenv("FACTOR_OP_DIR", FACTOR_OP_DIR)


def path_to_saved_file(fname):
    """
    Full path to a file in the saved folder; makes the folder if need be.
    """
    folder = saved_dir()
    os.makedirs(folder, exist_ok=True)
    return os.path.join(folder, fname)


def path_to_factor_operator(fname):
    return os.path.join(factor_op_dir(), fname)
