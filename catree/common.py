"""
Functions reused by the catree and ratree pipelines live here: logging setup,
external command execution, dependency checks and the job pool.
"""

import os
import shlex
import shutil
import logging
import subprocess
from pathlib import Path
from multiprocessing import Pool
from typing import Iterable, List, Optional

from catree.config import LOG_FORMAT

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """Raised when a precondition fails or an external command exits non-zero."""


def setup_logging(log_file=None, level=logging.INFO):
    """Log to the console and, if given, to a log file."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    return logging.getLogger("catree")


def log_arguments(rows):
    """Write the table of effective arguments to the log."""
    width = max(len(name) for name, _ in rows)
    logger.info("### Arguments ###")
    logger.info(f"| {'Option'.ljust(width)} | Value")
    logger.info(f"|-{'-' * width}-|{'-' * 28}")
    for name, value in rows:
        logger.info(f"| {name.ljust(width)} | {value}")


def sample_id(path):
    """Sample identifier: file name cut at the first dot."""
    return os.path.basename(str(path)).split('.')[0]


def file_prefix(path):
    """File name without its last extension."""
    return os.path.splitext(os.path.basename(str(path)))[0]


def find_fasta_files(directory, suffix) -> List[Path]:
    """Find all files named *.<suffix> below a directory."""
    return sorted(p for p in Path(directory).rglob(f"*.{suffix}") if p.is_file())


def check_dependencies(commands: Iterable[str]):
    """Raise PipelineError for the first command missing from PATH."""
    for cmd in commands:
        if shutil.which(cmd) is None:
            raise PipelineError(f"Command '{cmd}' not found!")


def format_command(cmd) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


def run_command(cmd, stdout=None, stderr=None, env=None):
    """Run an external command, raising PipelineError when it fails.

    stdout/stderr accept anything subprocess.run accepts; stderr is captured
    when not redirected so that it can be reported on failure.
    """
    cmd = [str(c) for c in cmd]
    cmd_line = format_command(cmd)
    logger.info(f"[CMD] {cmd_line}")

    capture_stderr = stderr is None
    try:
        result = subprocess.run(
            cmd,
            stdout=stdout,
            stderr=subprocess.PIPE if capture_stderr else stderr,
            text=True,
            env=env,
        )
    except FileNotFoundError:
        raise PipelineError(f"Command '{cmd[0]}' not found!")

    if result.returncode != 0:
        message = f"Error in {os.path.basename(cmd[0])} command: {cmd_line}"
        if capture_stderr and result.stderr:
            tail = result.stderr.strip().splitlines()[-5:]
            message += "\n" + "\n".join(tail)
        raise PipelineError(message)

    return result


def run_parallel(func, args_list, jobs=1):
    """Apply func to every argument tuple with a pool of `jobs` workers.

    Results keep the input order. The first exception raised by a worker
    propagates and aborts the remaining jobs.
    """
    args_list = list(args_list)
    if jobs <= 1 or len(args_list) <= 1:
        return [func(*args) for args in args_list]

    with Pool(min(jobs, len(args_list))) as pool:
        return pool.starmap(func, args_list)


def conda_prefix(env_name, conda_env_file: Optional[str] = None) -> List[str]:
    """Command prefix that runs a tool inside a conda environment.

    The conda executable is taken from the installation that owns
    conda_env_file (<root>/etc/profile.d/conda.sh -> <root>/bin/conda),
    falling back to the one on PATH.
    """
    if not env_name:
        raise PipelineError("Please specify the conda environment name.")

    if os.environ.get("CONDA_DEFAULT_ENV") == env_name:
        logger.info(f"Conda environment is already activated: {env_name}")
        return []

    conda = None
    if conda_env_file:
        env_file = Path(conda_env_file).expanduser()
        if env_file.is_file():
            candidate = env_file.resolve().parents[2] / "bin" / "conda"
            if candidate.exists():
                conda = str(candidate)
        else:
            logger.warning(f"Conda environment file not found: {conda_env_file}")

    if conda is None:
        conda = shutil.which("conda")
    if conda is None:
        raise PipelineError(
            f"Failed to initialize conda. Please check the environment file: {conda_env_file}")

    logger.info(f"Using conda environment: {env_name}")
    return [conda, "run", "-n", env_name, "--no-capture-output"]
