class ExplainBoardError(Exception):
    """Base class for every error the service surfaces to a user."""


class CaptureUnavailable(ExplainBoardError):
    """Microphone permission was denied or no input device could be opened."""


class LiveConnectionError(ExplainBoardError):
    """The live transcription transport failed to open or dropped."""


class SessionAlreadyActive(ExplainBoardError):
    pass


class GenerationError(ExplainBoardError):
    """The text-generation collaborator did not produce a usable answer."""


class ModelRequestError(GenerationError):
    pass


class MalformedModelOutput(GenerationError):
    pass


class ExtractionError(ExplainBoardError):
    """A transcript drain could not be turned into a segment. Never fatal."""


class ImageGenerationFailure(ExplainBoardError):
    pass
