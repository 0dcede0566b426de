# Exceptions
class PS3DecError(Exception):
    """Base class for every ps3dec failure"""


class MalformedHeader(PS3DecError):
    """Disc header is truncated or describes an impossible region map"""


class SectorOutOfRange(PS3DecError):
    """Sector index is not covered by any region"""


class InvalidBlockAlignment(PS3DecError):
    """Sector buffer is not a whole number of cipher blocks"""


class InvalidKeyFormat(PS3DecError):
    """Key is not 32 hexadecimal digits"""


class KeyFileNotFound(PS3DecError):
    """Named key file does not exist"""


class KeyNotFound(PS3DecError):
    """No key could be supplied for the image"""


class InvalidEncoding(PS3DecError):
    """Key file content is not valid UTF-8"""


class IoFailure(PS3DecError):
    """Reading or writing the image failed"""
