"""Built-in rule tables for the command/path guard.

Platform-specific tables are keyed by ``Platform`` so the guard does a
single lookup instead of branching on the OS.
"""

import re
from dataclasses import dataclass

from toolguard.core.types import Platform, RiskLevel


@dataclass(frozen=True)
class RestrictedCommand:
    """A base command that is allowed only after confirmation."""

    command: str
    risk_level: RiskLevel


@dataclass(frozen=True)
class PlatformCommandRules:
    blocked: tuple[str, ...]
    restricted: tuple[RestrictedCommand, ...]


OS_COMMAND_RULES: dict[Platform, PlatformCommandRules] = {
    Platform.DARWIN: PlatformCommandRules(
        blocked=(
            # Disk operations
            "diskutil", "hdiutil", "pdisk", "gpt", "newfs_*",
            # System modifications
            "nvram", "systemsetup", "scutil", "launchctl",
            # Security bypass
            "csrutil", "spctl", "codesign",
            # User management
            "dscl", "sysadminctl", "dseditgroup",
            # Network
            "pfctl", "dnscacheutil", "route",
            # Utilities that overwrite in bulk
            "purge", "ditto", "rsync", "dd",
        ),
        restricted=(
            RestrictedCommand("defaults", RiskLevel.MEDIUM),
            RestrictedCommand("osascript", RiskLevel.HIGH),
            RestrictedCommand("security", RiskLevel.HIGH),
            RestrictedCommand("networksetup", RiskLevel.HIGH),
        ),
    ),
    Platform.WIN32: PlatformCommandRules(
        blocked=(
            # Disk operations
            "format", "diskpart", "chkdsk", "convert", "defrag",
            # System modifications
            "bcdedit", "regedit", "reg", "regsvr32", "rundll32",
            "sfc", "dism", "wmic", "wevtutil",
            # Security
            "cipher", "schtasks", "sc", "netsh",
            # User management
            "net user", "net localgroup", "wuauclt",
            # Ownership and attribute changes
            "takeown", "icacls", "attrib", "assoc",
        ),
        restricted=(
            RestrictedCommand("powershell", RiskLevel.HIGH),
            RestrictedCommand("cmd", RiskLevel.MEDIUM),
            RestrictedCommand("wsl", RiskLevel.MEDIUM),
            RestrictedCommand("msiexec", RiskLevel.HIGH),
        ),
    ),
    Platform.LINUX: PlatformCommandRules(
        blocked=(
            # Disk operations
            "mkfs", "fdisk", "parted", "dd", "shred",
            # System modifications
            "systemctl", "service", "update-rc.d", "chkconfig",
            "modprobe", "insmod", "rmmod",
            # Package management needs explicit permission
            "apt-get", "yum", "dnf", "zypper", "pacman", "snap",
            # User management
            "useradd", "userdel", "usermod", "passwd", "groupadd",
            # Network
            "iptables", "ip6tables", "ufw", "firewall-cmd",
            # Mounts and roots
            "mount", "umount", "chroot", "pivot_root",
        ),
        restricted=(
            RestrictedCommand("crontab", RiskLevel.HIGH),
            RestrictedCommand("at", RiskLevel.MEDIUM),
            RestrictedCommand("visudo", RiskLevel.CRITICAL),
            RestrictedCommand("dpkg", RiskLevel.HIGH),
        ),
    ),
}

COMMON_DANGEROUS_COMMANDS: tuple[str, ...] = (
    # Destructive deletion
    "rm -rf", "rm -fr", "del /s", "del /f",
    # Privilege escalation
    "sudo", "su", "doas", "runas",
    # Shutdown
    "shutdown", "reboot", "halt", "poweroff",
    # Forceful process kills
    "kill -9", "killall", "pkill -9",
    # Raw device writes
    "> /dev/sda", "> /dev/null", "> /dev/zero",
)

# Package managers (npm, yarn, pnpm) are not safe commands
SAFE_COMMANDS: frozenset[str] = frozenset(
    {
        # File inspection
        "ls", "dir", "pwd", "cd", "find", "grep", "cat", "head", "tail",
        "less", "more", "wc", "sort", "uniq", "diff", "file",
        # Text processing
        "sed", "awk", "cut", "tr", "echo", "printf",
        # Archives
        "tar", "zip", "unzip", "gzip", "gunzip",
        # Network utilities
        "ping", "nslookup", "dig", "host", "curl", "wget",
        # Development tools
        "git", "python", "node", "java", "gcc", "g++", "make", "cmake",
        # System info
        "whoami", "hostname", "uname", "date", "uptime", "df", "du",
        "ps", "top", "htop", "free", "vmstat",
    }
)

# rm with any flags aimed at / or /*, e.g. "rm -r -f /" or "rm -rf --no-preserve-root /"
ROOT_DELETION = re.compile(r"(?<![\w.-])rm\s+(?:-[\w-]*\s+)*/\*?(?=[\s;&|)]|$)")

DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    ROOT_DELETION,
    re.compile(r"rm\s+-[rf]+\s+/"),  # rm -rf on absolute paths
    re.compile(r">\s*/dev/"),  # redirect into device files
    re.compile(r"dd\s+.*of=/"),  # dd onto root paths
    re.compile(r"chmod\s+777"),
    re.compile(r"curl.*\|\s*(ba)?sh"),
    re.compile(r"wget.*\|\s*(ba)?sh"),
)

SHELL_OPERATORS: tuple[str, ...] = ("&&", "||", ";", "|", "`", "$(", "${", ">>", "2>")

BLOCKED_PATHS: dict[Platform, tuple[str, ...]] = {
    Platform.DARWIN: (
        "/System", "/Library/Security", "/private/etc",
        "/usr/bin", "/usr/sbin", "/private/var/db",
    ),
    Platform.WIN32: (
        "C:\\Windows\\System32", "C:\\Windows\\SysWOW64",
        "C:\\Program Files", "C:\\Program Files (x86)",
        "C:\\ProgramData", "C:\\Users\\All Users",
    ),
    Platform.LINUX: (
        "/etc", "/bin", "/sbin", "/usr/bin", "/usr/sbin",
        "/boot", "/root", "/proc", "/sys", "/dev",
    ),
}

SENSITIVE_PATHS: dict[Platform, tuple[str, ...]] = {
    Platform.DARWIN: ("~/Library", "~/.ssh", "~/.gnupg"),
    Platform.WIN32: ("%APPDATA%", "%LOCALAPPDATA%", "%USERPROFILE%\\.ssh"),
    Platform.LINUX: ("~/.ssh", "~/.gnupg", "~/.config", "/var"),
}


def compile_term(term: str) -> re.Pattern[str]:
    """Compile a blocked term into a regex that matches it as a command word.

    The term must start at a word boundary, so ``su`` does not match inside
    ``result``. Single-word terms must also end at one, so ``reg`` does not
    match ``regedit``; multi-word terms such as ``rm -rf`` still match
    ``rm -rfv``. A trailing ``*`` matches any non-space suffix.
    """
    glob = term.endswith("*")
    body = re.escape(term.rstrip("*"))
    if glob:
        body += r"\S*"

    prefix = r"(?<![\w.-])" if term[0].isalnum() else ""
    suffix = ""
    if not glob and " " not in term and term[-1].isalnum():
        suffix = r"(?![\w-])"
    return re.compile(prefix + body + suffix)


def normalize_command(command: str) -> str:
    """Lowercase a command and collapse runs of whitespace to single spaces.

    Every rule in this module is written against this form.
    """
    return " ".join(command.lower().split())
