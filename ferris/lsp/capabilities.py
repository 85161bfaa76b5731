from typing import Any

from ..utils.config import merge_config

CLIENT_COMMANDS = [
    "rust-analyzer.runSingle",
    "rust-analyzer.debugSingle",
    "rust-analyzer.showReferences",
    "rust-analyzer.gotoLocation",
    "editor.action.triggerParameterHints",
]


def make_client_capabilities() -> dict[str, Any]:
    return {
        "general": {
            "positionEncodings": ["utf-16"],
        },
        "window": {
            "workDoneProgress": True,
            "showMessage": {"messageActionItem": {"additionalPropertiesSupport": False}},
        },
        "workspace": {
            "applyEdit": True,
            "workspaceEdit": {
                "documentChanges": True,
                "resourceOperations": [],
            },
            "configuration": True,
            "workspaceFolders": True,
            "didChangeWatchedFiles": {"dynamicRegistration": False},
            "symbol": {
                "dynamicRegistration": False,
                "symbolKind": {"valueSet": list(range(1, 27))},
            },
            "executeCommand": {"dynamicRegistration": False},
            "semanticTokens": {"refreshSupport": True},
        },
        "textDocument": {
            "synchronization": {
                "dynamicRegistration": False,
                "didSave": True,
                "willSave": True,
            },
            "completion": {
                "dynamicRegistration": False,
                "contextSupport": False,
                "completionItem": {
                    "snippetSupport": False,
                    "commitCharactersSupport": False,
                    "preselectSupport": False,
                    "deprecatedSupport": False,
                    "documentationFormat": ["markdown", "plaintext"],
                },
                "completionItemKind": {"valueSet": list(range(1, 26))},
            },
            "hover": {
                "dynamicRegistration": False,
                "contentFormat": ["markdown", "plaintext"],
            },
            "signatureHelp": {
                "dynamicRegistration": False,
                "signatureInformation": {
                    "documentationFormat": ["markdown", "plaintext"],
                },
            },
            "definition": {"dynamicRegistration": False, "linkSupport": True},
            "typeDefinition": {"dynamicRegistration": False, "linkSupport": True},
            "implementation": {"dynamicRegistration": False, "linkSupport": True},
            "references": {"dynamicRegistration": False},
            "documentSymbol": {
                "dynamicRegistration": False,
                "symbolKind": {"valueSet": list(range(1, 27))},
                "hierarchicalDocumentSymbolSupport": True,
            },
            "codeAction": {
                "dynamicRegistration": False,
                "codeActionLiteralSupport": {
                    "codeActionKind": {
                        "valueSet": [
                            "",
                            "quickfix",
                            "refactor",
                            "refactor.extract",
                            "refactor.inline",
                            "refactor.rewrite",
                            "source",
                            "source.organizeImports",
                        ]
                    }
                },
                "isPreferredSupport": True,
                "resolveSupport": {"properties": ["edit"]},
            },
            "formatting": {"dynamicRegistration": False},
            "rangeFormatting": {"dynamicRegistration": False},
            "rename": {"dynamicRegistration": False, "prepareSupport": True},
            "publishDiagnostics": {"relatedInformation": True},
            "semanticTokens": {
                "dynamicRegistration": False,
                "requests": {"range": False, "full": {"delta": True}},
                "tokenTypes": [],
                "tokenModifiers": [],
                "formats": ["relative"],
                "augmentsSyntaxTokens": True,
                "multilineTokenSupport": False,
                "overlappingTokenSupport": True,
            },
            "callHierarchy": {"dynamicRegistration": False},
        },
    }


def rust_analyzer_capabilities() -> dict[str, Any]:
    extensions: dict[str, Any] = {
        "textDocument": {
            "completion": {
                "completionItem": {
                    "snippetSupport": True,
                    # auto-import needs the edits resolved lazily
                    "resolveSupport": {
                        "properties": ["documentation", "detail", "additionalTextEdits"],
                    },
                },
            },
            # we want highlights for every token, not only the ones
            # tree-sitter can't see
            "semanticTokens": {"augmentsSyntaxTokens": False},
        },
        "experimental": {
            "hoverActions": True,
            "hoverRange": True,
            "serverStatusNotification": True,
            "snippetTextEdit": True,
            "codeActionGroup": True,
            "ssr": True,
            "commands": {"commands": list(CLIENT_COMMANDS)},
        },
    }
    return merge_config(make_client_capabilities(), extensions)
