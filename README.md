# modbuskit

Tools for polling a Modbus RTU pump station over serial or TCP:

- **modbus-db-init** creates the SQLite configuration database (point and
  alarm definitions) that the poller reads.
- **modbus-poller** polls the station, tracks state changes and alarms,
  writes a sequence-of-events log and daily event databases, and shows a
  live console where you can send commands.

## Installation

```
pip install .
```

## Creating the configuration database

```
modbus-db-init --db poller.db
```

The database holds the default point map: bitmap points with their normal
state and on/off texts, analog points with their units and scaling, and the
alarm definitions attached to them. If the file already exists the command
refuses to run and exits with status 1. Pass `--force` to replace it.

## Running the poller

```
modbus-poller --mode tcp --target-tcp 127.0.0.1:5020 --db poller.db
modbus-poller --mode serial --target-serial /dev/ttyUSB0
```

Defaults: `--mode tcp`, `--target-tcp 127.0.0.1:5020`,
`--target-serial COM2`, `--db poller.db`. Serial ports are opened at
9600 baud, 8 data bits, no parity, one stop bit. The poller talks to
slave 2.

The poller groups the configured registers into read requests (function
code 3, at most 120 registers per request), polls once a second and writes
a Unix-time heartbeat to registers 40008–40009. If the connection fails it
retries until you quit.

Field changes, initial states, user commands and alarms are written to
`poller_events.log` and to a daily database `events_YYYY-MM-DD.db` in the
current directory. Messages about the event databases go to
`poller_database.log`.

### Console

The console shows active alarms, the connection status with round-trip time
and frame counters, the last frame sent and received in hex, and every
configured point. Rows that changed in the last two seconds are
highlighted.

Keys: `i` or `c` moves to the command line, `Esc` leaves it, arrow keys and
Page Up/Page Down scroll the point list, `q` quits.

Commands (names in double quotes may contain spaces):

```
set "Start"
clear "Start"
write 40004 12
write "Tank Level SP" 25.5
```

`set`/`s` and `clear`/`c` switch one bit of a bitmap point. `write`/`w`
takes a register address or a point name and an engineering value, which
is scaled back to raw counts before it is written with function code 6.

## Library use

```python
import sqlite3
from modbuskit.frames import build_read_request, check_crc
from modbuskit.points import load_configuration, scale_value

frame = build_read_request(2, 41001, 9)
assert check_crc(frame)

with sqlite3.connect("poller.db") as conn:
    config = load_configuration(conn)
flow = config.points_by_name["Flow"]
print(scale_value(15420, flow))  # 750.0
```

Other modules:

- `modbuskit.pollio`: `build_poll_groups`, `parse_read_response`,
  `open_connection` and the `PollerIO` worker.
- `modbuskit.processor`: `StateProcessor`, which turns register changes
  into events and alarms.
- `modbuskit.events`: `Event` and `EventWriter`, the daily SQLite store.
- `modbuskit.state`: `PollerState`, the shared live state.
- `modbuskit.serverconfig`: a slave-side register map with
  `get_register_definition`, `find_point_by_name`, `scale_value` and
  `unscale_value`.

## What is not included

The package has no simulated Modbus slave. `modbuskit.serverconfig`
describes the registers such a slave would hold, but nothing in the package
listens for requests or answers them; point the poller at a real station or
at another slave.

## Tests

```
pip install .[test]
pytest
```