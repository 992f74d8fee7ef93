"""Defaults for visit detection and page classification."""

# Seconds of inactivity after which the next hit from an address is a new visit
VISIT_TIMEOUT_SECONDS: float = 600.0

# Extensions of files that resemble a "page"
PAGE_EXTENSIONS: list[str] = [
    "htm", "html", "php", "php3", "php4", "asp", "aspx", "jsp", "js", "py",
    "shtml", "xhtml", "cgi", "pl", "rb", "erb", "ejs", "phtml", "dhtml", "cfm",
    "do", "action", "axd", "ashx", "asmx", "svc", "faces", "jspx", "xsp", "md",
    "markdown", "liquid", "mustache", "hbs", "wsdl", "wadl", "swagger",
]
