from dataclasses import replace
from decimal import Decimal

import pytest

from exceptions import SpedFileError, SpedParseError
from helpers import documento, item
from sped_generator import gerar_sped_fiscal
from sped_models import Participante, TipoOperacao
from sped_validator import (
    carregar_registros, decodificar_conteudo, parse_sped_line, validar_arquivo, validar_sped
)


def _trocar_linha(conteudo, prefixo, nova):
    linhas = conteudo.split("\r\n")
    for i, linha in enumerate(linhas):
        if linha.startswith(prefixo):
            linhas[i] = nova
            break
    return "\r\n".join(linhas)


def test_arquivo_gerado_e_valido(dados):
    validacao = validar_sped(gerar_sped_fiscal(dados))

    assert validacao.valido, validacao.erros
    assert validacao.erros == []
    assert validacao.contagem["C100"] == 2
    assert validacao.contagem["C170"] == 3


def test_contagem_segue_ordem_de_primeira_ocorrencia(dados):
    validacao = validar_sped(gerar_sped_fiscal(dados))

    assert list(validacao.contagem)[:3] == ["0000", "0001", "0150"]
    assert list(validacao.contagem)[-1] == "9999"


def test_conteudo_vazio():
    validacao = validar_sped("")

    assert not validacao.valido
    assert validacao.erros == ["Arquivo vazio"]


def test_9900_adulterado_e_reportado(dados):
    conteudo = _trocar_linha(gerar_sped_fiscal(dados), "|9900|C170|", "|9900|C170|4|")

    validacao = validar_sped(conteudo)

    assert not validacao.valido
    assert any("C170" in erro and "4" in erro for erro in validacao.erros)


def test_sem_9999_e_reportado(dados):
    conteudo = gerar_sped_fiscal(dados)
    sem_9999 = conteudo[:conteudo.rindex("|9999|")]

    validacao = validar_sped(sem_9999)

    assert not validacao.valido
    assert "Último registro deve ser 9999" in validacao.erros


def test_primeiro_registro_diferente_de_0000(dados):
    conteudo = gerar_sped_fiscal(dados)
    sem_0000 = conteudo[conteudo.index("\r\n") + 2:]

    validacao = validar_sped(sem_0000)

    assert "Primeiro registro deve ser 0000" in validacao.erros


def test_delimitador_ausente_e_reportado(dados):
    conteudo = _trocar_linha(gerar_sped_fiscal(dados), "|0190|", "0190|UN|UNIDADE")

    validacao = validar_sped(conteudo)

    assert not validacao.valido
    assert any("delimitador" in erro for erro in validacao.erros)


def test_x990_divergente_e_reportado(dados):
    conteudo = _trocar_linha(gerar_sped_fiscal(dados), "|C990|", "|C990|99|")

    validacao = validar_sped(conteudo)

    assert any(erro.startswith("C990") for erro in validacao.erros)


def test_registro_sem_9900_e_reportado(dados):
    conteudo = _trocar_linha(gerar_sped_fiscal(dados), "|9900|0190|", "|9900|XXXX|0|")

    validacao = validar_sped(conteudo)

    assert "Registro 0190 sem 9900 correspondente" in validacao.erros


def test_divergencia_entre_c100_e_itens_vira_aviso(dados):
    dados.documentos.append(
        documento(TipoOperacao.SAIDA, 999, [item("P1", valor=Decimal("10.00"))], "C1",
                  valor_produtos=Decimal("12.00"))
    )

    validacao = validar_sped(gerar_sped_fiscal(dados))

    assert validacao.valido
    assert len(validacao.avisos) == 1
    assert "999" in validacao.avisos[0]


def test_parse_sped_line_remove_pipes_das_pontas():
    assert parse_sped_line("|C170|1|P1||\r\n") == ["C170", "1", "P1", ""]


def test_carregar_registros_indexa_filhos_pelo_pai(dados):
    dataframes = carregar_registros(gerar_sped_fiscal(dados))

    c100 = dataframes["C100"]
    c170 = dataframes["C170"]
    assert list(c100["C100_INDEX"]) == [0, 1]
    assert list(c170["C100_INDEX"]) == [0, 1, 1]
    assert c170.groupby("C100_INDEX")["VL_ITEM"].sum().tolist() == pytest.approx([100.0, 80.0])


def test_carregar_registros_linha_curta_levanta_erro():
    with pytest.raises(SpedParseError):
        carregar_registros("|0000|017|\r\n|C1\r\n")


def test_validar_arquivo_do_disco(dados, tmp_path):
    arquivo = tmp_path / "sped.txt"
    arquivo.write_bytes(gerar_sped_fiscal(dados).encode("latin-1"))

    validacao = validar_arquivo(arquivo)

    assert validacao.valido, validacao.erros


def test_validar_arquivo_inexistente(tmp_path):
    with pytest.raises(SpedFileError):
        validar_arquivo(tmp_path / "nao_existe.txt")


def test_decodificar_conteudo_utf8():
    texto = "|0150|F1|AÇÚCAR E CAFÉ LTDA|1058|\r\n"

    assert decodificar_conteudo(texto.encode("utf-8")) == texto


def test_documento_de_participante_invalido_vira_aviso(dados):
    dados.participantes[0] = Participante(codigo="F1", nome="FORNECEDOR UM", cnpj_cpf="11444777000162")

    validacao = validar_sped(gerar_sped_fiscal(dados))

    assert validacao.valido
    assert any("0150 CNPJ inválido: 11444777000162" in aviso for aviso in validacao.avisos)


def test_cfop_invalido_vira_aviso(dados):
    conteudo = gerar_sped_fiscal(dados).replace("|1102|", "|4102|")

    validacao = validar_sped(conteudo)

    assert any("CFOP inválido: 4102" in aviso for aviso in validacao.avisos)


@pytest.mark.parametrize("quebra", ["\x0b", "\x0c", "\x1c", "\x1e", "\x85", "\u2028", "\u2029", "\r\n"])
def test_quebra_de_linha_no_texto_nao_quebra_o_arquivo(dados, quebra):
    dados.produtos[0] = replace(dados.produtos[0], descricao=f"PARAFUSO{quebra}M8")

    conteudo = gerar_sped_fiscal(dados)
    validacao = validar_sped(conteudo)

    assert validacao.valido, validacao.erros
    assert "|PARAFUSO M8|" in conteudo


def test_linhas_sao_separadas_apenas_pelo_terminador_do_arquivo(dados):
    conteudo = gerar_sped_fiscal(dados).replace("|PRODUTO UM|", "|PRODUTO\x85UM|")

    validacao = validar_sped(conteudo)

    assert validacao.valido, validacao.erros
    assert len(carregar_registros(conteudo)["0200"]) == 2


def test_9900_duplicado_e_reportado(dados):
    linhas = gerar_sped_fiscal(dados).split("\r\n")
    duplicada = next(linha for linha in linhas if linha.startswith("|9900|C100|"))
    linhas.insert(linhas.index(duplicada), duplicada)

    validacao = validar_sped("\r\n".join(linhas))

    assert not validacao.valido
    assert any("9900 duplicado para o registro C100" in erro for erro in validacao.erros)


def test_bloco_sem_encerramento_e_reportado(dados):
    linhas = [
        linha for linha in gerar_sped_fiscal(dados).split("\r\n")
        if not linha.startswith("|D990|")
    ]

    validacao = validar_sped("\r\n".join(linhas))

    assert "Bloco D sem registro de encerramento D990" in validacao.erros
