import logging
import subprocess

logger = logging.getLogger(__name__)


def run_command(args, check=False):
    """Run a command and capture its output as text.

    Returns the CompletedProcess. A missing executable reads as exit status
    127, like the shell reports it. With check=True a non-zero exit raises
    subprocess.CalledProcessError.
    """
    logger.debug("running: %s", ' '.join(args))
    try:
        result = subprocess.run(args, capture_output=True, text=True)
    except FileNotFoundError as e:
        result = subprocess.CompletedProcess(args, 127, '', str(e))
    if result.returncode != 0:
        logger.debug("'%s' exited %d: %s", ' '.join(args), result.returncode, result.stderr.strip())
        if check:
            raise subprocess.CalledProcessError(result.returncode, args, result.stdout, result.stderr)
    return result


def run_bash(bash_script, show_realtime=False):
    """Execute bash commands using bash -c, raising on failure.

    With show_realtime the combined output is streamed line by line to the log
    while the script runs (long builds).
    """
    if show_realtime:
        with subprocess.Popen(
            ['bash', '-c', bash_script],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1
        ) as process:
            try:
                while True:
                    output = process.stdout.readline()
                    if output == '' and process.poll() is not None:
                        break
                    if output:
                        logger.info(output.rstrip())
            except BaseException:
                process.kill()
                raise
            return_code = process.wait()

        if return_code != 0:
            raise subprocess.CalledProcessError(return_code, bash_script)
        return return_code

    result = subprocess.run(['bash', '-c', bash_script], capture_output=True, text=True)
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, bash_script, result.stdout, result.stderr)
    if result.stdout:
        logger.info(result.stdout.rstrip())
    return 0
