"""
Rule-based command classifier.

A pure function from command text to an optional (category, tags,
context) triple. Called before every store append; no match leaves the
three fields unset.
"""

from typing import NamedTuple, Optional


class Classification(NamedTuple):
    category: str
    tags: str
    context: str


def classify(text: str) -> Optional[Classification]:
    """Classify a command line by simple keyword rules."""
    command = text.lower()

    if "git" in command:
        return Classification(
            "Version Control",
            "git,development",
            "Managing git repository",
        )
    if command.startswith("cd ") or "ls" in command or "dir" in command:
        return Classification(
            "File Navigation",
            "filesystem,navigation",
            "Navigating the file system",
        )
    if "cargo" in command or "rust" in command:
        return Classification(
            "Rust Development",
            "rust,cargo,development",
            "Working with Rust projects",
        )
    if "docker" in command or "container" in command:
        return Classification(
            "Containerization",
            "docker,containers,deployment",
            "Working with Docker containers",
        )
    if "npm" in command or "node" in command or "yarn" in command:
        return Classification(
            "JavaScript Development",
            "javascript,nodejs,npm",
            "Working with Node.js/JavaScript",
        )
    return None
