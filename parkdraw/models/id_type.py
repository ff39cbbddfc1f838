import uuid

from sqlalchemy import BigInteger, Integer, String

# Autoincrement keys: BigInteger, with the Integer variant SQLite needs for rowid aliasing.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

# Buildings, residents, spots and sessions are addressed by UUID strings,
# which is also how they appear in public result paths.
UUID_TYPE = String(36)


def new_id() -> str:
    return str(uuid.uuid4())
