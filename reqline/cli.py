"""reqline CLI - compose one HTTP request from typed request items."""

import logging
import sys
from http.cookiejar import LoadError

import click

logging_initialized = False

TOOL_HELP = """\
reqline: compose and send one HTTP request from command-line items.

\b
USAGE
─────
  reqline [OPTIONS] [METHOD] URL [REQUEST_ITEM ...]

\b
METHOD
──────
  The HTTP method (GET, POST, PUT, DELETE, ...). Case-insensitive.
  If omitted, POST is used when any data item is given, otherwise GET:

  \b
    reqline example.org                # => GET
    reqline example.org hello=world    # => POST

\b
URL
───
  The scheme defaults to http:// when missing. Shorthand for localhost:

  \b
    reqline :3000                      # => http://localhost:3000
    reqline :/foo                      # => http://localhost/foo

  With base_url in the config, paths starting with / are appended to it.

\b
REQUEST ITEMS
─────────────
  The separator decides what each item becomes:

  \b
    ':'    header                Referer:http://example.org  User-Agent:bacon/1.0
    '=='   URL parameter         search==reqline
    '='    data field            name=reqline  language=Python
    ':='   raw JSON field        awesome:=true  amount:=42  colors:='["red","blue"]'
           (only with --json)
    '=@'   data field from file  essay=@Documents/essay.txt
    ':=@'  raw JSON from file    package:=@./package.json  (only with --json)
    '@'    form file upload      cv@~/Documents/CV.pdf     (only with --form)

  Data fields are sent as a JSON object with --json, otherwise form-encoded.
  Escape a separator in a field name with a backslash:

  \b
    field-name-with\\:colon=value

\b
OUTPUT
──────
  JSON responses (Content-Type: application/json) are re-indented with tabs.
  --raw prints the body exactly as received. -h/--headers prints the status
  line and sorted response headers first.

\b
CONFIG FILE FORMAT (.reqline.yaml)
──────────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .reqline.yaml / .reqline.yml / reqline.yaml / reqline.yml in CWD
    3. ~/.reqline/config.yaml (global)

  \b
  defaults:
    base_url: ${API_BASE_URL}       # env var resolved at runtime
    env_file: .env                  # load .env file
    timeout: 30                     # seconds
    json: false                     # default to --json
    check_status: false
    insecure: false
    cookie_file: ~/.reqline/cookies.txt
    headers:                        # used unless given as an item
      Accept: application/json
    auth:
      type: bearer                  # bearer | api-key | basic
      token: ${API_TOKEN}

\b
EXIT CODES
──────────
  0 success, 2 usage or request item error, 1 request or response failure.
  With --check-status, a non-2xx response exits with the first digit of
  the status code.
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("args", nargs=-1)
@click.option(
    "-j",
    "--json",
    "json_mode",
    is_flag=True,
    default=False,
    help="Serialize data items as a JSON object.",
)
@click.option(
    "-f",
    "--form",
    "form_mode",
    is_flag=True,
    default=False,
    help="Serialize data items as form values. Required for '@' file uploads.",
)
@click.option(
    "-h",
    "--headers",
    "print_headers",
    is_flag=True,
    default=False,
    help="Print the response status line and headers.",
)
@click.option(
    "-B",
    "--no-body",
    "no_body",
    is_flag=True,
    default=False,
    help="Do not print the response body.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Print the response body without JSON post-processing.",
)
@click.option(
    "-a",
    "--auth",
    "basic_auth",
    default=None,
    metavar="USER:PASS",
    help="HTTP basic auth credentials.",
)
@click.option("--insecure", is_flag=True, default=False, help="Skip HTTPS certificate checking.")
@click.option(
    "--check-status",
    is_flag=True,
    default=False,
    help="If the HTTP status is not 2xx, print a warning and exit with "
    "the first digit of the status code.",
)
@click.option(
    "--stdin",
    "use_stdin",
    is_flag=True,
    default=False,
    help="Read the request body from standard input.",
)
@click.option(
    "--cookiefile",
    "cookie_file",
    default=None,
    help="File to store persistent cookies in. Default: ~/.reqline/cookies.txt.",
)
@click.option("-C", "--no-cookies", is_flag=True, default=False, help="Disable cookie storage.")
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Print debugging messages, including the HTTP exchange.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqline.yaml in CWD, then ~/.reqline/config.yaml.",
)
def main(
    args,
    json_mode,
    form_mode,
    print_headers,
    no_body,
    raw,
    basic_auth,
    insecure,
    check_status,
    use_stdin,
    cookie_file,
    no_cookies,
    timeout,
    debug,
    config_file,
):
    """Compose one HTTP request from request items and print the response."""
    from reqline.core import (
        load_config,
        load_env,
        resolve_config_path,
        resolve_value,
    )
    from reqline.executor import build_session, execute_request
    from reqline.request import RequestOptions

    if debug:
        _configure_logging()

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})
    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")

    # --- Validate mutually exclusive options ---
    if json_mode and form_mode:
        _fail("--json and --form are mutually exclusive.", 2)

    method, url, tokens = _split_args(args)
    if url is None:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(2)

    options = RequestOptions(
        json=json_mode or (bool(defaults.get("json")) and not form_mode),
        form=form_mode,
        stdin=use_stdin,
    )
    base_url = resolve_value(defaults.get("base_url"), env)
    request = _build_request(method, url, tokens, options, base_url, basic_auth, defaults, env)

    jar = _open_cookie_jar(cookie_file, no_cookies, config)
    session = build_session(jar, insecure=insecure or bool(defaults.get("insecure")))
    result = execute_request(
        request,
        session=session,
        timeout=_resolve_timeout(timeout, defaults.get("timeout")),
    )
    try:
        if result.error:
            _fail(result.error, 1)
        exit_code = _show_response(
            result,
            check_status=check_status or bool(defaults.get("check_status")),
            print_headers=print_headers,
            no_body=no_body,
            raw=raw,
        )
    finally:
        result.close()
        if jar is not None:
            _save_cookie_jar(jar)
    if exit_code:
        sys.exit(exit_code)


# ── Steps ────────────────────────────────────────────────────────────────


def _build_request(method, url, tokens, options, base_url, basic_auth, defaults, env):
    """Parse items and assemble the OutboundRequest. Exit 2 on bad input."""
    from reqline.core import basic_auth_header, build_auth_headers, resolve_default_headers
    from reqline.items import ParseError, parse_items
    from reqline.request import AssemblyError, build_state, finalize, normalize_url

    try:
        items = parse_items(tokens)
        state = build_state(items, options, method, normalize_url(url, base_url))
    except (ParseError, AssemblyError) as e:
        _fail(str(e), 2)

    for name, value in resolve_default_headers(defaults, env).items():
        state.set_default_header(name, value)
    for name, value in build_auth_headers(defaults.get("auth"), env).items():
        state.set_default_header(name, value)
    if basic_auth:
        state.set_header("Authorization", basic_auth_header(basic_auth))

    stdin = click.get_binary_stream("stdin") if options.stdin else None
    try:
        return finalize(state, options, stdin)
    except AssemblyError as e:
        _fail(str(e), 2)


def _open_cookie_jar(cookie_file, no_cookies, config):
    """Load the persistent cookie jar, or None when cookies are disabled."""
    from reqline.core import DEFAULT_COOKIE_FILE, config_relative
    from reqline.executor import load_cookie_jar

    if no_cookies:
        return None
    defaults = config.get("defaults", {})
    if cookie_file:
        path = cookie_file
    elif defaults.get("cookie_file"):
        path = config_relative(defaults["cookie_file"], config)
    else:
        path = DEFAULT_COOKIE_FILE
    try:
        return load_cookie_jar(path)
    except (OSError, LoadError) as e:
        _fail(f"cannot create cookie jar: {e}", 1)


def _save_cookie_jar(jar):
    from reqline.executor import save_cookie_jar

    try:
        save_cookie_jar(jar)
    except OSError as e:
        click.echo(f"WARNING: cannot save cookies to {jar.filename}: {e}", err=True)


def _show_response(result, check_status, print_headers, no_body, raw):
    """Render the response to stdout and return the exit code."""
    from reqline.output import RenderError, render_response

    status_class = result.status_code // 100
    if check_status and status_class != 2:
        click.echo(f"WARNING: HTTP response code {result.status}", err=True)

    out = click.get_binary_stream("stdout")
    try:
        render_response(
            result,
            out,
            raw=raw,
            show_headers=print_headers,
            show_body=not no_body,
        )
    except RenderError as e:
        _fail(str(e), 1)
    finally:
        out.flush()

    if check_status and status_class != 2:
        return status_class
    return 0


# ── Helpers ──────────────────────────────────────────────────────────────


def _split_args(args):
    """Split positional args into (method, url, item tokens)."""
    from reqline.request import is_method

    args = list(args)
    method = None
    if args and is_method(args[0]):
        method, args = args[0].upper(), args[1:]
    if not args:
        return method, None, []
    return method, args[0], args[1:]


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return t
    return default


def _configure_logging():
    global logging_initialized
    if logging_initialized:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger("reqline")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logging_initialized = True


def _fail(message, code):
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(code)
