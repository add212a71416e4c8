from tqdm import tqdm
import logging
import sys


class ProgressMiddleware:
    """
    Progress bar + optional log file, with the bar pinned at the bottom of
    the screen. Runtime prints go through .write() so the bar stays anchored.
    """

    def __init__(self, total=None, desc="Progress", unit="item", disable=False, log_file=None):
        self.total = total
        self.desc = desc
        self.unit = unit
        self.disable = disable
        self.logger = None
        self._bar = None
        self._stderr = sys.stderr

        if log_file:
            logging.basicConfig(
                filename=log_file,
                level=logging.INFO,
                format="%(asctime)s - %(levelname)s - %(message)s"
            )
            self.logger = logging.getLogger(__name__)
            self.logger.info("Scan started: %s %s(s) queued.", total, unit)

    def start(self):
        """Create the bar immediately so any writes can go above it."""
        if self.disable or self._bar is not None:
            return
        self._bar = tqdm(
            total=self.total,
            desc=self.desc,
            unit=self.unit,
            leave=True,
            position=0,
            dynamic_ncols=True,
            file=self._stderr,
            mininterval=0.1,
        )

    def write(self, text: str):
        """Print above the bar and mirror the line to the log file."""
        tqdm.write(text, file=self._stderr)
        if self._bar is not None:
            self._bar.refresh()
        if self.logger:
            self.logger.info(text)

    def advance(self, n: int = 1):
        if self._bar is None:
            self.start()
        if self._bar is not None:
            self._bar.update(n)
            if self.logger:
                self.logger.info("%s: processed %d/%s", self.desc, self._bar.n, self._bar.total)

    def close(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        if self.logger:
            self.logger.info("Scan finished.")
