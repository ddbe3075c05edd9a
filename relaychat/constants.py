# Relay wire protocol constants (line prefixes and separators)

DEFAULT_PORT = 9001

# Server -> client
L_SUBMITNAME = "SUBMITNAME"
L_NAMEACCEPTED = "NAMEACCEPTED"
L_USERLIST = "USERLIST"
L_MESSAGE = "MESSAGE "

# Client -> server addressing: "<targets>>><body>", targets comma separated.
ROUTE_DELIM = ">>"
TARGET_SEP = ","

# USERLIST names are joined with this; names must never contain it.
ROSTER_SEP = ":"

MODE_UNICAST = "UNICAST"

# 0 disables the name length limit.
NAME_MAX_CHARS = 0

# Longest inbound line accepted, in bytes including the newline.
MAX_LINE_BYTES = 65536
