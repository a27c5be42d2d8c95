import asyncio
import shlex
import shutil
from typing import Sequence, Tuple, Union
from archon_node.core.exceptions import ExternalToolError
from archon_node.core.logger import setup_logger

logger = setup_logger(__name__)

Command = Union[str, Sequence[str]]

def _display(command: Command) -> str:
    if isinstance(command, str):
        return command
    return " ".join(shlex.quote(part) for part in command)

async def run_command(
    command: Command,
    check: bool = True,
    timeout: int = 60
) -> str:
    """
    异步执行外部命令

    Args:
        command: 字符串按shell执行, 列表按参数直接执行
        check: 是否检查返回值
        timeout: 超时时间(秒)

    Returns:
        命令输出(stdout与stderr合并)

    Raises:
        ExternalToolError: 返回值非0(check=True)、超时或命令不存在
    """
    _, output = await run_command_with_status(command, check=check, timeout=timeout)
    return output

async def run_command_with_status(
    command: Command,
    check: bool = True,
    timeout: int = 60
) -> Tuple[int, str]:
    """执行命令并返回 (返回值, 合并输出)"""
    display = _display(command)
    logger.debug(f"执行命令: {display}")
    try:
        if isinstance(command, str):
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
    except FileNotFoundError:
        raise ExternalToolError(display, f"'{display.split()[0]}' not found")

    try:
        stdout, _ = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise ExternalToolError(display, f"命令执行超时 ({timeout}s)")

    output = stdout.decode(errors="replace").strip() if stdout else ""
    if check and process.returncode != 0:
        logger.error(f"命令执行失败: {display} (exit {process.returncode})")
        raise ExternalToolError(display, output, process.returncode)

    return process.returncode, output

def command_exists(name: str) -> bool:
    """检查命令是否在PATH中"""
    return shutil.which(name) is not None
