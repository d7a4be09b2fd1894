class GPRError(Exception):
    pass


class ConfigurationError(GPRError, ValueError):
    pass


class ParseError(ConfigurationError):
    pass


class UnrecognizedStepError(ParseError):
    def __init__(self, token):
        super().__init__(f"Unrecognized step: {token}")
        self.token = token


class PrimitiveError(ConfigurationError):
    pass


class FileResolutionError(GPRError):
    pass


class LoadError(GPRError):
    pass


class ExportError(GPRError):
    pass
