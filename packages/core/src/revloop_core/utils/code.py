import posixpath

REVIEWABLE_EXTENSIONS = {
    # .NET
    ".cs",
    ".fs",
    ".vb",
    # JavaScript / TypeScript
    ".js",
    ".ts",
    ".jsx",
    ".tsx",
    ".py",
    # JVM
    ".java",
    ".kt",
    ".go",
    ".rs",
    # C / C++
    ".cpp",
    ".c",
    ".h",
    ".hpp",
    ".rb",
    ".php",
    ".swift",
    ".sql",
    ".yaml",
    ".yml",
    ".json",
    ".xml",
}


def is_reviewable_file(file_name: str) -> bool:
    _, ext = posixpath.splitext(file_name.replace("\\", "/"))
    return ext.lower() in REVIEWABLE_EXTENSIONS
