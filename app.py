"""
Gerador SPED Fiscal - Aplicação Web Streamlit

Interface web para gerar o arquivo EFD ICMS/IPI a partir de um arquivo de
dados YAML e para validar arquivos SPED existentes.
"""

import streamlit as st
import pandas as pd
import yaml

from config import get_config
from exceptions import SpedError
from sped_models import SpedParams
from sped_service import FonteDadosMemoria, carregar_yaml, gerar_arquivo_sped, listar_periodos_disponiveis
from sped_validator import carregar_registros, decodificar_conteudo, validar_sped

# =========================
# CONFIGURAÇÃO DA PÁGINA
# =========================

st.set_page_config(
    page_title="Gerador SPED Fiscal",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .titulo { font-size: 2.2rem; font-weight: 700; color: #2E7D32; margin-bottom: 0.25rem; }
    .subtitulo { font-size: 1.05rem; color: #555; margin-bottom: 1.5rem; }
    .caixa-resultado, .caixa-info { padding: 0.9rem 1.1rem; border-radius: 0.4rem; margin-bottom: 1rem; }
    .caixa-resultado { background-color: #F1F8E9; border: 1px solid #8BC34A; }
    .caixa-info { background-color: #FFF8E1; border: 1px solid #FFC107; }
</style>
""", unsafe_allow_html=True)


# =========================
# FUNÇÕES AUXILIARES
# =========================

def load_data_source(uploaded_file) -> FonteDadosMemoria:
    """
    Monta a fonte de dados a partir do YAML enviado.

    Args:
        uploaded_file: Arquivo carregado via Streamlit

    Returns:
        FonteDadosMemoria com a empresa e os documentos do arquivo
    """
    dados = carregar_yaml(uploaded_file.getvalue().decode('utf-8'))
    return FonteDadosMemoria.from_dict(dados)


def show_validation(validacao) -> None:
    """Exibe erros, avisos e a contagem de registros de uma validação."""
    if validacao.valido:
        st.success("✅ Estrutura válida")
    else:
        st.error(f"❌ {len(validacao.erros)} erro(s) estrutural(is)")
        for erro in validacao.erros:
            st.markdown(f"- {erro}")

    if validacao.avisos:
        with st.expander(f"⚠️ {len(validacao.avisos)} aviso(s)"):
            for aviso in validacao.avisos:
                st.markdown(f"- {aviso}")

    if validacao.contagem:
        st.subheader("📊 Registros por tipo")
        contagem_df = pd.DataFrame(
            list(validacao.contagem.items()), columns=["Registro", "Quantidade"]
        )
        st.dataframe(contagem_df, use_container_width=True, hide_index=True)


# =========================
# ABAS
# =========================

def generate_tab() -> None:
    st.markdown("""
    <div class="caixa-info">
        Envie um arquivo YAML com as seções <strong>empresa</strong>, <strong>participantes</strong>,
        <strong>produtos</strong>, <strong>documentos</strong> e, opcionalmente, <strong>inventario</strong>.
    </div>
    """, unsafe_allow_html=True)

    uploaded_file = st.file_uploader(
        "📁 Arquivo de dados (.yaml)",
        type=['yaml', 'yml'],
        key="dados_yaml"
    )
    if uploaded_file is None:
        return

    try:
        fonte = load_data_source(uploaded_file)
    except (SpedError, yaml.YAMLError, UnicodeDecodeError) as e:
        st.error(f"❌ Erro ao ler dados: {e}")
        return

    empresa = fonte.empresa
    st.markdown(f"**Empresa:** {empresa.razao_social} ({empresa.cnpj})")

    periodos = listar_periodos_disponiveis(empresa.id, fonte)
    if not periodos:
        st.warning("Nenhum documento fiscal encontrado nos dados.")
        return

    periodos_df = pd.DataFrame([
        {"Período": f"{p.mes:02d}/{p.ano}", "Notas": p.total_notas, "Valor Total": p.valor_total}
        for p in periodos
    ])
    st.dataframe(periodos_df, use_container_width=True, hide_index=True)

    col1, col2 = st.columns(2)
    with col1:
        periodo = st.selectbox(
            "Período",
            periodos,
            format_func=lambda p: f"{p.mes:02d}/{p.ano}"
        )
    with col2:
        incluir_inventario = st.checkbox("Incluir inventário (Bloco H)")

    if st.button("🚀 Gerar SPED", type="primary", use_container_width=True):
        with st.spinner("Gerando arquivo SPED..."):
            params = SpedParams.do_mes(
                empresa.id, periodo.mes, periodo.ano, incluir_inventario=incluir_inventario
            )
            resultado = gerar_arquivo_sped(params, fonte)

        if not resultado.sucesso:
            st.error(f"❌ {resultado.erro}")
            return

        metricas = resultado.metricas
        st.markdown(f"""
        <div class="caixa-resultado">
            <h3>✅ Arquivo gerado!</h3>
            <p>
                <strong>Arquivo:</strong> {resultado.nome_arquivo}<br>
                <strong>Linhas:</strong> {metricas.get('total_linhas', 0):,}<br>
                <strong>Tempo:</strong> {metricas.get('tempo_segundos', 0):.2f}s
            </p>
        </div>
        """, unsafe_allow_html=True)

        show_validation(resultado.validacao)

        encoding = get_config('output.encoding', 'latin-1')
        st.download_button(
            label="📥 Baixar SPED",
            data=resultado.conteudo.encode(encoding, errors='replace'),
            file_name=resultado.nome_arquivo,
            mime="text/plain",
            type="primary",
            use_container_width=True
        )


def validate_tab() -> None:
    uploaded_file = st.file_uploader(
        "📁 Arquivo SPED (.txt)",
        type=['txt', 'sped'],
        key="sped_txt"
    )
    if uploaded_file is None:
        return

    file_size = len(uploaded_file.getvalue()) / 1024
    st.markdown(f"""
    <div class="caixa-info">
        <strong>Arquivo:</strong> {uploaded_file.name}<br>
        <strong>Tamanho:</strong> {file_size:.1f} KB
    </div>
    """, unsafe_allow_html=True)

    try:
        conteudo = decodificar_conteudo(uploaded_file.getvalue())
        validacao = validar_sped(conteudo)
    except SpedError as e:
        st.error(f"❌ Erro ao validar arquivo: {e}")
        return

    show_validation(validacao)

    try:
        dataframes = carregar_registros(conteudo)
    except SpedError as e:
        st.warning(f"Registros não puderam ser carregados: {e}")
        return

    if dataframes:
        st.divider()
        registro = st.selectbox("Visualizar registro", sorted(dataframes))
        st.dataframe(dataframes[registro], use_container_width=True, hide_index=True)


# =========================
# INTERFACE PRINCIPAL
# =========================

def main():
    st.markdown('<p class="titulo">📊 Gerador SPED Fiscal</p>', unsafe_allow_html=True)
    st.markdown('<p class="subtitulo">EFD ICMS/IPI: geração e validação de arquivos</p>', unsafe_allow_html=True)

    with st.sidebar:
        st.header("ℹ️ Sobre")
        st.markdown("""
        Gera os blocos:

        - **Bloco 0**: Abertura e cadastros
        - **Bloco C**: NF-e (C100/C170/C190)
        - **Bloco D**: CT-e (D100/D190)
        - **Bloco H**: Inventário
        - **Bloco 9**: Controle e encerramento
        """)

        st.divider()

        st.header("📋 Instruções")
        st.markdown("""
        1. Envie o YAML de dados da empresa
        2. Escolha o período
        3. Baixe o arquivo gerado
        """)

    aba_gerar, aba_validar = st.tabs(["Gerar", "Validar"])
    with aba_gerar:
        generate_tab()
    with aba_validar:
        validate_tab()

    st.divider()
    st.markdown(
        "<p style='text-align: center; color: #888;'>Gerador SPED Fiscal | Desenvolvido com Streamlit</p>",
        unsafe_allow_html=True
    )


if __name__ == "__main__":
    main()
