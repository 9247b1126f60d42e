"""
Run logging setup: timestamped log file under <output_dir>/logs plus console.
"""

import logging
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(output_dir: Path, verbose: bool = False) -> Path:
    """
    Configure the ``fetalmas`` logger to write to file and console.

    Parameters
    ----------
    output_dir : Path
        Pipeline output directory; the log goes to ``output_dir/logs``
    verbose : bool
        Log collaborator commands and output at DEBUG level

    Returns
    -------
    Path
        The log file
    """
    log_dir = Path(output_dir) / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = log_dir / f'mas_pipeline_{timestamp}.log'
    level = logging.DEBUG if verbose else logging.INFO

    logger = logging.getLogger('fetalmas')
    logger.setLevel(level)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        fh = logging.FileHandler(log_file)
        fh.setLevel(level)
        fh.setFormatter(formatter)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(formatter)

        logger.addHandler(fh)
        logger.addHandler(ch)

    return log_file
