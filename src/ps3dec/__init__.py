from ps3dec.api import PS3Dec
from ps3dec.crypto import SectorCipher
from ps3dec.crypto import decrypt_sector
from ps3dec.crypto import encrypt_sector
from ps3dec.crypto import generate_iv
from ps3dec.crypto import validate_key
from ps3dec.regions import Region
from ps3dec.regions import extract_regions
from ps3dec.regions import locate

__version__ = "1.0.0"
