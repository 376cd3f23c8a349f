"""
Exceções do gerador SPED Fiscal.

Tudo o que a geração, a validação e a leitura de arquivos podem levantar
deriva de ``SpedError``; os cálculos de folha têm sua própria exceção.
"""

from typing import List, Optional


class SpedError(Exception):
    """Classe base para todas as exceções SPED."""
    pass


class SpedConfigError(SpedError):
    """
    Empresa inexistente ou sem os campos de identificação obrigatórios.

    Levantada antes de qualquer registro ser montado. ``campos`` traz os
    rótulos ausentes (CNPJ, IE, UF).
    """

    def __init__(self, message: str, campos: Optional[List[str]] = None):
        self.campos = list(campos or [])
        if self.campos:
            message = f"{message}: {', '.join(self.campos)}"
        super().__init__(message)


class SpedDataError(SpedError):
    """Falha de uma consulta da fonte de dados do período."""

    def __init__(self, message: str, origem: Optional[str] = None):
        self.origem = origem
        super().__init__(f"{message} ({origem})" if origem else message)


class SpedParseError(SpedError):
    """
    Linha de um arquivo SPED que não pode ser lida.

    A mensagem recebe o número da linha e um trecho do conteúdo.
    """

    def __init__(self, message: str, line_number: Optional[int] = None,
                 line_content: Optional[str] = None):
        self.line_number = line_number
        self.line_content = line_content

        if line_number:
            message = f"Linha {line_number}: {message}"
        if line_content:
            trecho = line_content if len(line_content) <= 100 else line_content[:100] + "..."
            message = f"{message}\nConteúdo: {trecho}"

        super().__init__(message)


class SpedValidationError(SpedError):
    """
    Valor rejeitado na montagem de um registro ou nos parâmetros da geração.

    Exemplos: campo fora do leiaute, mês inválido, campo obrigatório vazio
    em modo estrito.
    """

    def __init__(self, message: str, registro: Optional[str] = None,
                 campo: Optional[str] = None, valor: Optional[str] = None):
        self.registro = registro
        self.campo = campo
        self.valor = valor

        detalhes = [
            f"{rotulo}: {conteudo}"
            for rotulo, conteudo in (("Registro", registro), ("Campo", campo), ("Valor", valor))
            if conteudo
        ]
        if detalhes:
            message = f"{message} ({', '.join(detalhes)})"

        super().__init__(message)


class SpedIntegrityError(SpedValidationError):
    """
    Contagem corrente divergente dos registros emitidos.

    Indica erro interno do montador: um 9900 ou X990 não confere com as
    linhas efetivamente geradas.
    """

    def __init__(self, message: str, parent_registro: Optional[str] = None,
                 child_registro: Optional[str] = None):
        self.parent_registro = parent_registro
        self.child_registro = child_registro

        if parent_registro and child_registro:
            message = f"{message} (Pai: {parent_registro}, Filho: {child_registro})"

        super().__init__(message)


class SpedFileError(SpedError):
    """Arquivo SPED inexistente, grande demais ou ilegível."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        self.file_path = file_path
        super().__init__(f"{message}: {file_path}" if file_path else message)


class SpedEncodingError(SpedFileError):
    """Encoding do arquivo não detectado ou conteúdo não decodificável."""
    pass


class FolhaPagamentoError(Exception):
    """Parâmetros inválidos para os cálculos de folha de pagamento."""
    pass
