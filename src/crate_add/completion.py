"""
Shell completion scripts.
"""

from typing import Dict


def get_bash_completion() -> str:
    """Bash completion script."""
    return """
# Bash completion for crate-add
_crate_add_completion() {
    local cur prev opts
    COMPREPLY=()
    cur="${COMP_WORDS[COMP_CWORD]}"
    prev="${COMP_WORDS[COMP_CWORD-1]}"

    if [[ ${COMP_CWORD} == 1 ]]; then
        opts="add info config completion --version --help"
        COMPREPLY=( $(compgen -W "${opts}" -- ${cur}) )
        return 0
    fi

    if [[ "${COMP_WORDS[1]}" == "config" && ${COMP_CWORD} == 2 ]]; then
        opts="init show"
        COMPREPLY=( $(compgen -W "${opts}" -- ${cur}) )
        return 0
    fi

    if [[ "${COMP_WORDS[1]}" == "add" ]]; then
        case "${prev}" in
            --manifest-path)
                COMPREPLY=( $(compgen -f -- ${cur}) )
                return 0
                ;;
            --path)
                COMPREPLY=( $(compgen -d -- ${cur}) )
                return 0
                ;;
            --upgrade)
                COMPREPLY=( $(compgen -W "none patch minor all" -- ${cur}) )
                return 0
                ;;
            *)
                opts="--dev --build --vers --git --path --target --optional --upgrade --manifest-path --quiet --verbose --help"
                COMPREPLY=( $(compgen -W "${opts}" -- ${cur}) )
                return 0
                ;;
        esac
    fi
}

complete -F _crate_add_completion crate-add
"""


def get_zsh_completion() -> str:
    """Zsh completion script."""
    return """
#compdef crate-add

_crate_add() {
    local context state state_descr line
    typeset -A opt_args

    _arguments -C \\
        '1: :_crate_add_commands' \\
        '*:: :->args'

    case $state in
        args)
            case $words[1] in
                add)
                    _arguments \\
                        '(--build -B)'{--dev,-D}'[Add as a development dependency]' \\
                        '(--dev -D)'{--build,-B}'[Add as a build dependency]' \\
                        '--vers[Version requirement]:version:' \\
                        '--git[Git repository URL]:url:' \\
                        '--path[Local crate directory]:path:_directories' \\
                        '--target[Target platform or cfg expression]:target:' \\
                        '--optional[Add as an optional dependency]' \\
                        '--upgrade[Upgrade strategy]:strategy:(none patch minor all)' \\
                        '--manifest-path[Path to Cargo.toml]:manifest:_files -g "*.toml"' \\
                        '--quiet[Suppress non-critical output]' \\
                        '--verbose[Enable verbose logging]' \\
                        '*:crate:'
                    ;;
                config)
                    _arguments '1: :(init show)'
                    ;;
                completion)
                    _arguments '1: :(bash zsh fish)'
                    ;;
            esac
            ;;
    esac
}

_crate_add_commands() {
    local commands
    commands=(
        'add:Add dependencies to a Cargo.toml manifest'
        'info:Show usage information'
        'config:Configuration management commands'
        'completion:Generate shell completion scripts'
    )
    _describe 'command' commands
}

_crate_add "$@"
"""


def get_fish_completion() -> str:
    """Fish completion script."""
    return """
# Fish completion for crate-add

complete -c crate-add -n '__fish_use_subcommand' -a 'add' -d 'Add dependencies'
complete -c crate-add -n '__fish_use_subcommand' -a 'info' -d 'Show information'
complete -c crate-add -n '__fish_use_subcommand' -a 'config' -d 'Configuration management'
complete -c crate-add -n '__fish_use_subcommand' -a 'completion' -d 'Shell completion scripts'
complete -c crate-add -n '__fish_use_subcommand' -l version -d 'Show version'
complete -c crate-add -n '__fish_use_subcommand' -l help -d 'Show help'

complete -c crate-add -n '__fish_seen_subcommand_from add' -s D -l dev -d 'Development dependency'
complete -c crate-add -n '__fish_seen_subcommand_from add' -s B -l build -d 'Build dependency'
complete -c crate-add -n '__fish_seen_subcommand_from add' -l vers -d 'Version requirement' -x
complete -c crate-add -n '__fish_seen_subcommand_from add' -l git -d 'Git repository URL' -x
complete -c crate-add -n '__fish_seen_subcommand_from add' -l path -d 'Local crate directory' -x -a "(__fish_complete_directories)"
complete -c crate-add -n '__fish_seen_subcommand_from add' -l target -d 'Target platform' -x
complete -c crate-add -n '__fish_seen_subcommand_from add' -l optional -d 'Optional dependency'
complete -c crate-add -n '__fish_seen_subcommand_from add' -l upgrade -d 'Upgrade strategy' -x -a 'none patch minor all'
complete -c crate-add -n '__fish_seen_subcommand_from add' -l manifest-path -d 'Path to Cargo.toml' -F
complete -c crate-add -n '__fish_seen_subcommand_from add' -s q -l quiet -d 'Quiet mode'
complete -c crate-add -n '__fish_seen_subcommand_from add' -s v -l verbose -d 'Verbose mode'

complete -c crate-add -n '__fish_seen_subcommand_from config' -a 'init' -d 'Create sample config'
complete -c crate-add -n '__fish_seen_subcommand_from config' -a 'show' -d 'Show current config'
complete -c crate-add -n '__fish_seen_subcommand_from completion' -a 'bash zsh fish'
"""


def get_completion_scripts() -> Dict[str, str]:
    """Return all completion scripts."""
    return {
        "bash": get_bash_completion(),
        "zsh": get_zsh_completion(),
        "fish": get_fish_completion(),
    }
