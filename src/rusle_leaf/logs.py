"""Logger factory shared by the RUSLE modules."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "rusle_leaf"
_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def build_logger(name: str = LOGGER_NAME, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Create a logger with the shared handlers if it has not been configured.

    A stream handler at INFO is always attached.  When ``log_file`` is given
    a DEBUG file handler is attached as well, once per path.
    """
    logger = logging.getLogger(name)
    formatter = logging.Formatter(_FORMAT)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        logger.setLevel(logging.DEBUG)
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(logging.INFO)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    if log_file is not None:
        target = str(Path(log_file).resolve())
        if not any(isinstance(h, logging.FileHandler) and h.baseFilename == target
                   for h in logger.handlers):
            file_handler = logging.FileHandler(target)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


LOGGER = build_logger()
grids_logger = LOGGER.getChild("grids")
factors_logger = LOGGER.getChild("factors")
soil_loss_logger = LOGGER.getChild("soil_loss")
zonal_logger = LOGGER.getChild("zonal")
pipeline_logger = LOGGER.getChild("pipeline")
