from datetime import datetime
from typing import Annotated

from pydantic import PlainSerializer

from chatsync.utils.time import to_millis

# Stored as epoch milliseconds; pydantic parses the integer back into an aware UTC datetime
Timestamp = Annotated[datetime, PlainSerializer(to_millis, return_type=int)]
