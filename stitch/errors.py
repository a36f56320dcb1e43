class StitchError(Exception):
    """
    Base class for pipeline failures.

    Every error names the stage that raised it so a message like
    "[clustering] k=12 is outside the configured scan range 2..10" tells the
    operator where the pipeline stopped and which rule was broken.
    """
    stage = "pipeline"

    def __init__(self, message: str, stage: str = None):
        if stage is not None:
            self.stage = stage
        self.message = message
        super().__init__(f"[{self.stage}] {message}")


class InvalidImageFormat(StitchError):
    stage = "pixel table"


class InvalidKRange(StitchError):
    stage = "clustering"


class EmptyClusterError(StitchError):
    stage = "clustering"


class PaletteLookupError(StitchError):
    stage = "palette resolution"
