# svinit

A small init system for Linux with runit-style service supervision. It
installs five commands: `svinit`, `runsvdir`, `runsv`, `logon` and
`utmpset`.

## Commands

### `svinit`

The init process (`svinit.init.main`, built on the `Init` class).

When it runs as PID 1 it does the following:

1. It takes the console as standard input, output and error.
2. It writes `0` to `/proc/sys/kernel/ctrl-alt-del`, so that ctrl-alt-del
   arrives as `SIGINT`.
3. It runs three stages in turn: `/etc/startup`, then `/sbin/runsvdir`, then
   `/etc/shutdown`. Stage 1 gets the console as its controlling terminal.
   Stages 2 and 3 each start in a new session.

How each stage ends decides what happens next:

- If stage 1 crashes or exits with 100, stage 2 is skipped.
- If stage 2 crashes or exits with 111, its process group is killed. After
  five seconds, stage 2 starts again.
- During stage 2, `SIGCONT` or `SIGINT` ends the stage. Init sends the stage
  `SIGTERM` and waits up to five seconds. If the stage is still running, it
  gets `SIGKILL`. Init then moves on to stage 3.
- During the other stages these signals are logged and otherwise ignored.

After stage 3, init:

1. sends `SIGKILL` to every process,
2. syncs,
3. remounts file systems read-only through `/proc/sysrq-trigger`,
4. halts, powers off or reboots.

The action comes from the flag files in `/run`:

- `shutdown.halt` halts. The machine waits forever after sync.
- `shutdown.poweroff` powers off.
- With neither flag present, it reboots.

If both `shutdown.halt` and `shutdown.poweroff` are present, halt wins.

When `svinit` runs with any other PID, it asks the running init to shut
down. The action comes from the name it was called by:

- `poweroff` writes `/run/shutdown.poweroff`.
- `reboot` writes `/run/shutdown.reboot`.
- Any other name writes `/run/shutdown.halt`.

It first removes any old flag files, then sends `SIGCONT` to PID 1. It exits
with 1 if the flag file cannot be created.

### `runsvdir [directory]`

Watches a service directory, `/etc/svdir` by default. It starts
`/sbin/runsv <name>` for each subdirectory whose name does not begin with a
dot, up to 1000 services.

- A `runsv` that exits is started again.
- When a subdirectory disappears, its `runsv` gets `SIGTERM`.
- The directory is looked at about once a second while something has
  changed, and every five seconds otherwise.
- `SIGTERM` makes runsvdir exit with 0.
- `SIGHUP` makes it send `SIGTERM` to every `runsv` and then exit with 111.
- It exits with 100 if the directory does not exist.

The path of the supervisor program is set by `RunSvDir(svdir, runsv_path)`.

### `runsv <service>`

Supervises one service directory (class `Supervisor`).

**Running the service.** runsv runs `./run` and runs it again whenever it
exits, waiting at least a second between starts. If `./finish` exists, it
runs after each exit of `./run` with two arguments:

- the exit code, or `-1` if the service was killed by a signal;
- the low byte of the wait status.

If a file named `down` exists, the service is not started until it is asked
to be.

**State files.** The state is kept under `supervise/`:

| file | content |
|------|---------|
| `pid` | the PID of the running process, or empty |
| `stat` | a readable line such as `run` or `down`, with `paused`, `got TERM`, `want down` or `want exit` added when they apply |
| `status` | a 20-byte binary record |
| `lock` | a lock file; a second runsv on the same directory fails to lock it |

**Control.** Single characters written to the `supervise/control` FIFO
control the service:

| letter | action |
|--------|--------|
| `u` | want up; start if down |
| `d` | want down; stop if running |
| `o` | run once; start if down, do not restart |
| `x` | want exit; stop, then runsv exits |
| `t` | send TERM |
| `k` | send KILL |
| `p` | send STOP |
| `c` | send CONT |
| `a` | send ALRM |
| `h` | send HUP |
| `i` | send INT |
| `q` | send QUIT |
| `1` | send USR1 |
| `2` | send USR2 |

An executable `control/<letter>` script in the service directory changes the
default actions:

- For `t`, `k`, `p`, `c`, `a`, `h`, `i`, `q`, `1` and `2`, the script runs
  in place of sending the signal when it exits with 0.
- `control/u` runs before each start of `./run`.
- `control/d` runs when the service is stopped while it is wanted down.
- `control/x` runs when the service is stopped while it is wanted to exit.

**Exit.** `SIGTERM` acts like `x`. runsv exits with 0 once the service is
down and wanted to exit. It exits with 111 on a setup failure or a usage
error.

### `logon <tty>`

A minimal console getty. It accepts the tty with or without a leading
`/dev/`.

1. It resets the ownership and mode of the tty, and of the matching
   `/dev/vcs*` devices for `ttyN`.
2. It makes the tty the controlling terminal and standard input, output and
   error.
3. It prints `/etc/issue` followed by `Login: `.
4. It reads a login name of at most 39 printable ASCII characters. Empty
   names prompt again.
5. It runs `/bin/login -- <name>`.

Errors go to syslog; logon then waits five seconds and exits with 1. End of
input exits with 0.

### `utmpset <line>`

Marks a terminal line as logged out:

- In `/var/run/utmp`, it clears the user and host of the first logged-in
  record for the line, and marks that record as a dead process.
- It appends a dead-process record for the line to `/var/log/wtmp`.

It exits with 111 if either step fails.

## Library modules

The commands are built on these modules:

| module | contents |
|--------|----------|
| `svinit.taia` | `Tai` and `Taia` timestamps |
| `svinit.log` | `log_info`, `log_warn` and `log_error` lines, and `errno_message` |
| `svinit.text` | `str_len` and `str_equal`, which treat `None` as absent |
| `svinit.sig` | signal catching and masking helpers |
| `svinit.wait` | `wait_nohang`, `wait_pid`, `wait_crashed` and `wait_exitcode` |
| `svinit.iopause` | `iopause` and `pause_timeout` |
| `svinit.utmpset` | `UtmpRecord`, `utmp_logout` and `wtmp_logout` |
| `svinit.logon` | `strip_dev`, `read_logname` and `open_tty` |

## Installation

```
pip install .
```

## Example

Start a supervisor for a single service by hand:

```
runsv /etc/svdir/tty1
```

Clear the utmp entry for a terminal:

```
utmpset tty1
```

## What it does not do

- There is no command for sending control letters to a service. Write them
  to the service's `supervise/control` FIFO yourself.
- Installing the package does not put anything in `/sbin` or `/etc`:
  - runsvdir always starts the supervisor at `/sbin/runsv`.
  - init runs `/sbin/runsvdir`, `/etc/startup` and `/etc/shutdown`.

  Providing those programs, the stage scripts and the service directories is
  up to you.

## Tests

```
pip install .[test]
pytest
```