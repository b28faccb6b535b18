#!/usr/bin/env python3
"""
📦 zlib Android Builder
Download zlib and cross-compile it for every Android ABI with the NDK LLVM toolchain.
"""

import argparse
import hashlib
import http.client
import os
import sys
import subprocess
import shutil
import tarfile
import urllib.request
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
from enum import Enum
import yaml

DEFAULT_ZLIB_VERSION = "1.2.11"
DEFAULT_API_LEVEL = 21
ZLIB_BASE_URL = "https://zlib.net/fossils"
NDK_ENV_VAR = "ANDROID_NDK"

ABI_CHOICES = ["all", "arm", "arm64", "x86", "x86-64"]
BUILD_TYPE_CHOICES = ["all", "debug", "release"]

# ============================================================================
# ERRORS
# ============================================================================

class BuildError(RuntimeError):
    """Base class for errors that abort a build"""

class UsageError(BuildError):
    """Bad command line or config file input"""

class ToolFailure(BuildError):
    """An external command (download, extract, configure, make) failed"""

class UnsupportedError(BuildError):
    """Unsupported host OS, architecture or build type"""

# ============================================================================
# ENUMS AND DATA CLASSES
# ============================================================================

class Architecture(Enum):
    """Android target architectures: (token, target triple, ABI directory)"""
    ARM = ("arm", "armv7a-linux-androideabi", "armeabi-v7a")
    ARM64 = ("arm64", "aarch64-linux-android", "arm64-v8a")
    X86 = ("x86", "i686-linux-android", "x86")
    X86_64 = ("x86-64", "x86_64-linux-android", "x86-64")

    def __init__(self, token: str, triple: str, abi_name: str):
        self.token = token
        self.triple = triple
        self.abi_name = abi_name

    @classmethod
    def from_token(cls, token: str) -> "Architecture":
        for arch in cls:
            if arch.token == token:
                return arch
        raise UnsupportedError(f"Architecture not supported: {token}")

class BuildType(Enum):
    DEBUG = "Debug"
    RELEASE = "Release"

    @classmethod
    def from_token(cls, token: str) -> "BuildType":
        for build_type in cls:
            if build_type.value.lower() == token.lower():
                return build_type
        raise UnsupportedError(f"Build type not supported: {token}")

@dataclass(frozen=True)
class BuildRequest:
    """Settings for one run, resolved from flags, config file and environment"""
    ndk_dir: Optional[Path] = None
    android_abi: str = "all"
    api_level: int = DEFAULT_API_LEVEL
    zlib_version: str = DEFAULT_ZLIB_VERSION
    build_type: str = "all"
    static_only: bool = False
    keep_going: bool = False
    verbose: bool = False

    base_url: str = ZLIB_BASE_URL
    zlib_sha256: Optional[str] = None

    downloads_dir: Path = Path("downloads")
    output_dir: Path = Path("output")
    log_file: Path = Path("build.log")
    work_dir: Path = Path(".")

    @property
    def architectures(self) -> Tuple[Architecture, ...]:
        if self.android_abi == "all":
            return tuple(Architecture)
        return (Architecture.from_token(self.android_abi),)

    @property
    def build_types(self) -> Tuple[BuildType, ...]:
        if self.build_type == "all":
            return (BuildType.DEBUG, BuildType.RELEASE)
        return (BuildType.from_token(self.build_type),)

    @property
    def source_name(self) -> str:
        return f"zlib-{self.zlib_version}"

@dataclass(frozen=True)
class ToolchainProfile:
    """NDK tool paths for one (host, architecture, API level)"""
    host_tag: str
    target_triple: str
    api_level: int
    toolchain_dir: Path
    cc: Path
    as_: Path
    cxx: Path
    ld: Path
    ar: Path
    ranlib: Path
    strip: Path

    def as_env(self) -> Dict[str, str]:
        """Variables consumed by zlib's configure script"""
        return {
            'CC': str(self.cc),
            'AS': str(self.as_),
            'CXX': str(self.cxx),
            'LD': str(self.ld),
            'AR': str(self.ar),
            'RANLIB': str(self.ranlib),
            'STRIP': str(self.strip),
        }

# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

class Color:
    """ANSI color codes"""
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    BOLD = '\033[1m'
    RESET = '\033[0m'

def log_info(msg: str):
    print(f"{Color.BLUE}[INFO]{Color.RESET} {msg}")

def log_success(msg: str):
    print(f"{Color.GREEN}[SUCCESS]{Color.RESET} {msg}")

def log_warning(msg: str):
    print(f"{Color.YELLOW}[WARNING]{Color.RESET} {msg}")

def log_error(msg: str):
    print(f"{Color.RED}[ERROR]{Color.RESET} {msg}", file=sys.stderr)

def log_step(step: str, msg: str):
    print(f"\n{Color.CYAN}[{step}]{Color.RESET} {Color.BOLD}{msg}{Color.RESET}")

def append_log(log_file: Path, text: str):
    """Append a diagnostic line to the build log"""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write(text.rstrip('\n') + '\n')

def run_command(cmd: List[str], cwd: Optional[Path] = None,
                env: Optional[Dict] = None, capture: bool = False,
                check: bool = True, verbose: bool = False,
                log_file: Optional[Path] = None,
                quiet: bool = False) -> subprocess.CompletedProcess:
    """
    Run command, optionally appending its output to log_file.

    With quiet set, stdout is discarded and only stderr reaches the log.
    """
    cmd_str = ' '.join(shlex.quote(str(arg)) for arg in cmd)
    args = [str(arg) for arg in cmd]

    if verbose:
        log_info(f"Running: {cmd_str}")
        if cwd:
            log_info(f"  in: {cwd}")

    current_env = os.environ.copy()
    if env:
        current_env.update(env)

    try:
        if capture:
            result = subprocess.run(
                args, cwd=cwd, env=current_env,
                capture_output=True, text=True, encoding='utf-8',
                errors='replace'
            )
        elif log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, 'a', encoding='utf-8') as log:
                log.write(f"$ {cmd_str}\n")
                log.flush()
                result = subprocess.run(
                    args, cwd=cwd, env=current_env,
                    stdout=subprocess.DEVNULL if quiet else log,
                    stderr=log, text=True, encoding='utf-8',
                    errors='replace'
                )
        else:
            result = subprocess.run(
                args, cwd=cwd, env=current_env,
                text=True, encoding='utf-8', errors='replace'
            )
    except FileNotFoundError as e:
        raise ToolFailure(f"Command not found: {args[0]}") from e

    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, args,
                                            result.stdout, result.stderr)
    return result

def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1 << 16), b''):
            digest.update(chunk)
    return digest.hexdigest()

def download_file(url: str, dest: Path, log_file: Path,
                  sha256: Optional[str] = None) -> Path:
    """
    Download url to dest unless dest is already there (and matches sha256)
    """
    if dest.exists():
        if not sha256 or file_sha256(dest) == sha256:
            log_info(f"Using cached archive: {dest}")
            return dest
        log_warning(f"Checksum mismatch, re-downloading: {dest}")
        dest.unlink()

    dest.parent.mkdir(parents=True, exist_ok=True)
    # dest only ever holds a complete, verified archive
    part = dest.with_name(dest.name + ".part")

    log_info(f"Downloading: {url}")
    try:
        try:
            urllib.request.urlretrieve(url, part)
        except (OSError, ValueError, http.client.HTTPException) as e:
            append_log(log_file, f"download of {url} failed: {e!r}")
            raise ToolFailure(f"Failed to download {url}, check {log_file} for details") from e

        if sha256 and file_sha256(part) != sha256:
            append_log(log_file, f"sha256 of {url} does not match {sha256}")
            raise ToolFailure(f"Checksum verification failed for {dest}, check {log_file} for details")

        part.replace(dest)
    finally:
        if part.exists():
            part.unlink()

    log_success(f"Downloaded: {dest}")
    return dest

def extraction_filter() -> Dict[str, str]:
    """Use tarfile's 'data' filter on interpreters that ship it"""
    if hasattr(tarfile, 'data_filter'):
        return {'filter': 'data'}
    return {}

def extract_archive(archive: Path, dest: Path, log_file: Path):
    """
    Extract a tar archive (tar.gz, tar.xz, tar.bz2) into dest
    """
    log_info(f"Extracting: {archive} -> {dest}")

    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, 'r:*') as tar:
            tar.extractall(dest, **extraction_filter())
    except (tarfile.TarError, OSError) as e:
        append_log(log_file, f"extraction of {archive} failed: {e}")
        raise ToolFailure(f"Failed to extract {archive}, check {log_file} for details") from e

# ============================================================================
# SOURCE MANAGEMENT
# ============================================================================

class SourceManager:
    """Fetch the zlib tarball once and unpack a fresh tree for every build"""

    def __init__(self, request: BuildRequest):
        self.request = request
        self.cache_dir = request.downloads_dir
        self.archive = self.cache_dir / f"{request.source_name}.tar.gz"
        self.source_dir = request.work_dir / request.source_name

    @property
    def url(self) -> str:
        return f"{self.request.base_url.rstrip('/')}/{self.archive.name}"

    def ensure_archive(self) -> Path:
        """Download the archive into the cache unless it is already there"""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        return download_file(self.url, self.archive, self.request.log_file,
                             sha256=self.request.zlib_sha256)

    def extract(self) -> Path:
        """Replace any previous source tree with a fresh copy of the archive"""
        if self.source_dir.exists():
            shutil.rmtree(self.source_dir)

        extract_archive(self.archive, self.request.work_dir, self.request.log_file)

        if not self.source_dir.is_dir():
            append_log(self.request.log_file,
                       f"{self.archive} has no top-level {self.source_dir.name} directory")
            raise ToolFailure(f"Failed to extract {self.archive}, check {self.request.log_file} for details")
        return self.source_dir

# ============================================================================
# TOOLCHAIN
# ============================================================================

HOST_TAGS = {
    "Linux": "linux-x86_64",
    "Darwin": "darwin-x86_64",
}

def host_tag_for(kernel_name: str) -> str:
    """Map a `uname -s` kernel name to the NDK prebuilt host directory"""
    try:
        return HOST_TAGS[kernel_name]
    except KeyError:
        raise UnsupportedError(f"OS not supported: {kernel_name}") from None

def detect_host_tag() -> str:
    try:
        result = run_command(["uname", "-s"], capture=True)
    except (subprocess.CalledProcessError, ToolFailure) as e:
        raise UnsupportedError("Failed to detect OS") from e
    return host_tag_for(result.stdout.strip())

def resolve_toolchain(ndk_dir: Path, arch: Architecture, api_level: int,
                      host_tag: Optional[str] = None) -> ToolchainProfile:
    """
    Resolve the NDK LLVM toolchain for arch.

    The compiler binaries carry the API level in their name, e.g.
    aarch64-linux-android21-clang.
    """
    if host_tag is None:
        host_tag = detect_host_tag()

    toolchain_dir = Path(ndk_dir) / "toolchains" / "llvm" / "prebuilt" / host_tag
    bin_dir = toolchain_dir / "bin"
    cc = bin_dir / f"{arch.triple}{api_level}-clang"

    return ToolchainProfile(
        host_tag=host_tag,
        target_triple=arch.triple,
        api_level=api_level,
        toolchain_dir=toolchain_dir,
        cc=cc,
        as_=cc,
        cxx=bin_dir / f"{arch.triple}{api_level}-clang++",
        ld=bin_dir / "ld",
        ar=bin_dir / "llvm-ar",
        ranlib=bin_dir / "llvm-ranlib",
        strip=bin_dir / "llvm-strip",
    )

# ============================================================================
# BUILDER
# ============================================================================

class ZlibBuilder:
    """Configure, make and install one extracted zlib tree"""

    def __init__(self, request: BuildRequest):
        self.request = request
        self.source_dir = request.work_dir / request.source_name

    def install_prefix(self, arch: Architecture, build_type: BuildType) -> Path:
        return (self.request.output_dir / self.request.source_name
                / build_type.value / arch.abi_name).resolve()

    def configure_args(self, arch: Architecture, build_type: BuildType) -> List[str]:
        args = [f"--prefix={self.install_prefix(arch, build_type)}"]
        if self.request.static_only:
            args.append("--static")
        if build_type == BuildType.DEBUG:
            args.append("--debug")
        return args

    def _prepare_build_env(self, toolchain: ToolchainProfile) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(toolchain.as_env())
        return env

    def _run_step(self, name: str, cmd: List[str], env: Dict[str, str], quiet: bool = False):
        try:
            run_command(cmd, cwd=self.source_dir, env=env, verbose=self.request.verbose,
                        log_file=self.request.log_file, quiet=quiet)
        except subprocess.CalledProcessError as e:
            raise ToolFailure(
                f"{name} failed with code {e.returncode}, check {self.request.log_file} for details"
            ) from e

    def build(self, arch: Architecture, build_type: BuildType,
              toolchain: ToolchainProfile) -> Path:
        """Build and install into the per-ABI prefix, then drop the source tree"""
        prefix = self.install_prefix(arch, build_type)
        env = self._prepare_build_env(toolchain)

        log_info(f"Configuring {self.request.source_name} for {arch.abi_name} ({build_type.value})")
        self._run_step("configure", ["./configure", *self.configure_args(arch, build_type)],
                       env, quiet=True)

        log_info("Building")
        self._run_step("make", ["make"], env)

        log_info(f"Installing to {prefix}")
        self._run_step("make install", ["make", "install"], env)

        shutil.rmtree(self.source_dir)
        log_success(f"{arch.abi_name} {build_type.value} installed to {prefix}")
        return prefix

# ============================================================================
# ORCHESTRATION
# ============================================================================

def clean(request: BuildRequest):
    """Remove build output, the log file and leftover source trees"""
    log_step("CLEAN", "Removing generated files")

    if request.output_dir.exists():
        shutil.rmtree(request.output_dir)
        log_info(f"Removed {request.output_dir}")

    if request.log_file.exists():
        request.log_file.unlink()
        log_info(f"Removed {request.log_file}")

    for path in sorted(request.work_dir.glob("zlib-*")):
        if path.is_dir():
            shutil.rmtree(path)
            log_info(f"Removed {path}")

def run_builds(request: BuildRequest) -> int:
    """Fetch once, then extract and build every (build type, architecture) pair"""
    if request.ndk_dir is None:
        raise UsageError(f"Android NDK not found, pass --ndk-dir or set {NDK_ENV_VAR}")

    host_tag = detect_host_tag()

    sources = SourceManager(request)
    builder = ZlibBuilder(request)

    log_step("FETCH", f"zlib {request.zlib_version}")
    sources.ensure_archive()

    failures: List[str] = []
    for build_type in request.build_types:
        for arch in request.architectures:
            label = f"{arch.abi_name} {build_type.value}"
            log_step("BUILD", label)
            try:
                toolchain = resolve_toolchain(request.ndk_dir, arch, request.api_level, host_tag)
                sources.extract()
                builder.build(arch, build_type, toolchain)
            except BuildError as e:
                if not request.keep_going:
                    raise
                log_error(f"{label}: {e}")
                failures.append(label)

    if failures:
        log_error(f"Failed builds: {', '.join(failures)}")
        return 1
    return 0

# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG_KEYS = {
    "ndk_dir", "android_abi", "android_api_level", "zlib_version",
    "build_type", "static", "keep_going", "base_url", "zlib_sha256",
    "downloads_dir", "output_dir", "log_file",
}

def load_config_file(path: Path) -> Dict[str, Any]:
    """Load a YAML config file whose keys mirror the long flag names"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise UsageError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise UsageError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise UsageError(f"Config file {path} must contain a mapping")

    unknown = sorted(set(data) - CONFIG_KEYS)
    if unknown:
        raise UsageError(f"Unknown keys in {path}: {', '.join(unknown)}")
    return data

def request_from_args(args: argparse.Namespace,
                      environ: Optional[Dict[str, str]] = None) -> BuildRequest:
    """Merge flags, config file, environment and defaults into a BuildRequest"""
    if environ is None:
        environ = os.environ
    config = load_config_file(Path(args.config)) if args.config else {}

    def pick(name: str, default: Any = None) -> Any:
        value = getattr(args, name)
        if value is not None:
            return value
        return config.get(name, default)

    ndk_dir = pick("ndk_dir", environ.get(NDK_ENV_VAR) or None)

    android_abi = str(pick("android_abi", "all"))
    if android_abi not in ABI_CHOICES:
        raise UsageError(f"Invalid android abi: {android_abi}")

    build_type = str(pick("build_type", "all")).lower()
    if build_type not in BUILD_TYPE_CHOICES:
        raise UsageError(f"Invalid build type: {build_type}")

    api_level = pick("android_api_level", DEFAULT_API_LEVEL)
    if isinstance(api_level, bool) or not isinstance(api_level, int) or api_level <= 0:
        raise UsageError(f"Invalid android api level: {api_level}")

    sha256 = pick("zlib_sha256")

    return BuildRequest(
        ndk_dir=Path(ndk_dir) if ndk_dir else None,
        android_abi=android_abi,
        api_level=api_level,
        zlib_version=str(pick("zlib_version", DEFAULT_ZLIB_VERSION)),
        build_type=build_type,
        static_only=bool(pick("static", False)),
        keep_going=bool(pick("keep_going", False)),
        verbose=args.verbose,
        base_url=str(pick("base_url", ZLIB_BASE_URL)),
        zlib_sha256=str(sha256).strip().lower() if sha256 else None,
        downloads_dir=Path(pick("downloads_dir", "downloads")),
        output_dir=Path(pick("output_dir", "output")),
        log_file=Path(pick("log_file", "build.log")),
    )

# ============================================================================
# MAIN PROGRAM
# ============================================================================

class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad input as UsageError instead of exiting"""

    def error(self, message):
        raise UsageError(message)

def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number

def create_parser() -> ArgumentParser:
    """Create command line argument parser"""

    parser = ArgumentParser(
        prog="build_zlib",
        description="📦 zlib Android Builder - cross-compile zlib for Android ABIs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Build every ABI, Debug and Release, with the NDK from ${NDK_ENV_VAR}
  build_zlib

  # Static release build of arm64 only
  build_zlib --android-abi arm64 --build-type release --static

  # Use a config file (keys mirror the long options, e.g. zlib_version: 1.2.13)
  build_zlib --config build_zlib.yml

  # Remove output, log and extracted sources
  build_zlib --clean
"""
    )

    parser.add_argument(
        '--clean', '-c',
        action='store_true',
        help='Remove output directory, log file and extracted sources, then exit'
    )
    parser.add_argument(
        '--config',
        metavar='FILE',
        help='YAML config file with default values for the options below'
    )

    target_group = parser.add_argument_group('Target Selection')
    target_group.add_argument(
        '--ndk-dir',
        help=f'Android NDK root (default: ${NDK_ENV_VAR})'
    )
    target_group.add_argument(
        '--android-abi',
        choices=ABI_CHOICES,
        help='Target architecture (default: all)'
    )
    target_group.add_argument(
        '--android-api-level',
        type=positive_int,
        help=f'Target Android API level (default: {DEFAULT_API_LEVEL})'
    )

    build_group = parser.add_argument_group('Build Configuration')
    build_group.add_argument(
        '--zlib-version',
        help=f'zlib version (default: {DEFAULT_ZLIB_VERSION})'
    )
    build_group.add_argument(
        '--build-type',
        choices=BUILD_TYPE_CHOICES,
        help='Build type (default: all)'
    )
    build_group.add_argument(
        '--static', '-s',
        action='store_true',
        default=None,
        help='Build the static library only'
    )
    build_group.add_argument(
        '--keep-going',
        action='store_true',
        default=None,
        help='Continue with the remaining builds after a failure'
    )

    source_group = parser.add_argument_group('Sources')
    source_group.add_argument(
        '--base-url',
        help=f'Download location of zlib tarballs (default: {ZLIB_BASE_URL})'
    )
    source_group.add_argument(
        '--zlib-sha256',
        help='Expected SHA-256 of the zlib tarball'
    )

    dir_group = parser.add_argument_group('Directories')
    dir_group.add_argument(
        '--downloads-dir',
        help='Download cache directory (default: ./downloads)'
    )
    dir_group.add_argument(
        '--output-dir',
        help='Install root (default: ./output)'
    )
    dir_group.add_argument(
        '--log-file',
        help='Build log (default: ./build.log)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print every command before running it'
    )

    return parser

def main(argv: Optional[List[str]] = None) -> int:
    """Main program entry point"""

    parser = create_parser()
    try:
        args = parser.parse_args(argv)
        request = request_from_args(args)
    except UsageError as e:
        log_error(str(e))
        parser.print_help(sys.stderr)
        return 1

    if args.clean:
        clean(request)
        return 0

    print(f"""
{Color.BOLD}{Color.CYAN}📦 zlib Android Builder{Color.RESET}
{Color.BOLD}zlib:        {Color.GREEN}{request.zlib_version}{Color.RESET}
{Color.BOLD}ABI:         {Color.GREEN}{request.android_abi}{Color.RESET}
{Color.BOLD}API level:   {Color.GREEN}{request.api_level}{Color.RESET}
{Color.BOLD}Build type:  {Color.GREEN}{request.build_type}{Color.RESET}
{Color.BOLD}Static only: {Color.GREEN}{request.static_only}{Color.RESET}
{Color.BOLD}NDK:         {Color.GREEN}{request.ndk_dir}{Color.RESET}
    """)

    try:
        status = run_builds(request)
    except UsageError as e:
        log_error(str(e))
        parser.print_help(sys.stderr)
        return 1
    except BuildError as e:
        log_error(str(e))
        return 1
    except KeyboardInterrupt:
        log_error("Build interrupted by user")
        return 1

    if status == 0:
        log_success(f"zlib {request.zlib_version} installed under "
                    f"{request.output_dir / request.source_name}")
    return status

if __name__ == "__main__":
    sys.exit(main())
