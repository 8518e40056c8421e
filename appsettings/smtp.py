"""
appsettings/smtp.py -- SMTP connection check for the email settings page.

verify_smtp_connection() opens a connection, negotiates encryption and logs
in, then quits. No message is ever sent.

    ssl  -> implicit TLS (SMTP_SSL, usually port 465)
    tls  -> plain connect + STARTTLS (usually port 587)
    none -> plain connect, no encryption

Failures raise SmtpCheckError with a short message that is safe to show an
admin. The underlying exception is logged, never returned.
"""

from __future__ import annotations

import logging
import smtplib
import ssl

logger = logging.getLogger("securewatch.settings")


class SmtpCheckError(Exception):
    pass


def verify_smtp_connection(
    host: str,
    port: int,
    encryption: str,
    username: str,
    password: str,
    timeout: float = 15,
) -> None:
    """Connect and authenticate against host:port. Raises SmtpCheckError on failure."""
    context = ssl.create_default_context()
    try:
        if encryption == "ssl":
            client = smtplib.SMTP_SSL(host, port, timeout=timeout, context=context)
        else:
            client = smtplib.SMTP(host, port, timeout=timeout)
        with client:
            client.ehlo()
            if encryption == "tls":
                client.starttls(context=context)
                client.ehlo()
            client.login(username, password)
    except smtplib.SMTPAuthenticationError as exc:
        logger.warning("SMTP test: authentication failed for %s@%s:%s", username, host, port)
        raise SmtpCheckError("SMTP authentication failed. Check the username and password.") from exc
    except smtplib.SMTPNotSupportedError as exc:
        raise SmtpCheckError("The SMTP server does not support the selected encryption.") from exc
    except smtplib.SMTPException as exc:
        logger.warning("SMTP test against %s:%s failed: %s", host, port, exc)
        raise SmtpCheckError("The SMTP server rejected the connection.") from exc
    except ssl.SSLError as exc:
        logger.warning("SMTP test against %s:%s: TLS error: %s", host, port, exc)
        raise SmtpCheckError("TLS negotiation with the SMTP server failed.") from exc
    except OSError as exc:
        logger.warning("SMTP test could not reach %s:%s: %s", host, port, exc)
        raise SmtpCheckError("Could not connect to the SMTP server.") from exc
    logger.info("SMTP test against %s:%s succeeded", host, port)
